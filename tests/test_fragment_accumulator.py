#!/usr/bin/env python3
"""
Tests for fragment reassembly and the bounded fragment buffer
"""

import logging

import pytest

from trace_helpers import RecordingWriter, fragment_record, make_context, BASE_TICKS
from ndis_pcapng import (
    DropPolicy, FragmentAccumulator, FragmentBuffer, FrameEmitter, Interface,
    MediaType, MetadataCache, PropertyError,
)
from ndis_pcapng.ndiscap import KW_SEND


class TestFragmentBuffer:

    def test_append_advances_offset(self):
        buf = FragmentBuffer(capacity=100)
        assert buf.append(b'\x01' * 40)
        assert buf.append(b'\x02' * 30)
        assert buf.offset == 70
        assert buf.frame() == b'\x01' * 40 + b'\x02' * 30

    def test_append_refuses_overflow(self):
        buf = FragmentBuffer(capacity=10)
        assert buf.append(b'a' * 8)
        assert not buf.append(b'b' * 3)
        assert buf.offset == 8
        assert buf.frame() == b'a' * 8

    def test_exact_fit(self):
        buf = FragmentBuffer(capacity=10)
        assert buf.append(b'a' * 10)
        assert buf.remaining == 0
        assert buf.append(b'')

    def test_reset(self):
        buf = FragmentBuffer(capacity=10)
        buf.append(b'abc')
        buf.reset()
        assert buf.offset == 0
        assert buf.frame() == b''

    def test_clear_bits(self):
        buf = FragmentBuffer(capacity=10)
        buf.append(b'\x08\xff\x00')
        buf.clear_bits(1, 0x40)
        assert buf.frame() == b'\x08\xbf\x00'

    def test_clear_bits_beyond_offset_ignored(self):
        buf = FragmentBuffer(capacity=10)
        buf.append(b'\x08')
        buf.clear_bits(1, 0x40)
        assert buf.frame() == b'\x08'

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            FragmentBuffer(capacity=0)


@pytest.fixture
def ethernet():
    return Interface(lower_id=5, miniport_id=5, media_type=MediaType.ETHERNET, output_id=0)


@pytest.fixture
def wifi():
    return Interface(lower_id=7, miniport_id=7, media_type=MediaType.IEEE802_11, output_id=1)


def make_accumulator(max_frame_size=65535, drop_policy=DropPolicy.RESET):
    writer = RecordingWriter()
    cache = MetadataCache()
    accumulator = FragmentAccumulator(FrameEmitter(writer), cache,
                                      max_frame_size=max_frame_size, drop_policy=drop_policy)
    return accumulator, cache, writer


class TestFragmentAccumulator:

    def test_single_event_packet(self, ethernet):
        acc, _, writer = make_accumulator()
        frame = acc.process(fragment_record(5, b'\xaa' * 64), ethernet)

        assert frame is not None
        assert frame.length == 64
        assert len(writer.packets) == 1
        assert writer.packets[0].interface_id == 0
        assert acc.buffer.offset == 0

    def test_multi_event_packet(self, ethernet):
        acc, _, writer = make_accumulator()
        first = b'\x01' * 40
        second = b'\x02' * 30

        assert acc.process(fragment_record(5, first, end=False), ethernet) is None
        assert acc.buffer.offset == 40
        frame = acc.process(fragment_record(5, second, start=False), ethernet)

        assert frame.length == 70
        assert writer.packets[0].payload == first + second

    def test_length_is_sum_of_fragments(self, ethernet):
        acc, _, writer = make_accumulator()
        lengths = [17, 1, 250, 0, 33]
        for i, length in enumerate(lengths):
            last = i == len(lengths) - 1
            acc.process(fragment_record(5, bytes([i]) * length, start=(i == 0), end=last), ethernet)

        assert len(writer.packets) == 1
        assert len(writer.packets[0].payload) == sum(lengths)

    def test_direction_and_timestamp(self, ethernet):
        acc, _, writer = make_accumulator()
        acc.process(fragment_record(5, b'x' * 10, keywords=KW_SEND, timestamp=BASE_TICKS + 25),
                    ethernet)
        acc.process(fragment_record(5, b'y' * 10), ethernet)

        sent, received = writer.packets
        assert sent.is_send and not received.is_send
        assert sent.timestamp_usec == 1_655_526_400_000_002

    def test_802_11_protected_flag_cleared(self, wifi):
        acc, _, writer = make_accumulator()
        acc.process(fragment_record(7, b'\x08\x41' + b'\x00' * 22), wifi)
        acc.process(fragment_record(7, b'\x08\x01' + b'\x00' * 22), wifi)

        for packet in writer.packets:
            assert packet.payload[1] & 0x40 == 0
            assert packet.payload[1] & 0x01 == 0x01

    def test_802_11_flag_cleared_across_fragments(self, wifi):
        acc, _, writer = make_accumulator()
        acc.process(fragment_record(7, b'\x88', end=False), wifi)
        acc.process(fragment_record(7, b'\xff\xff', start=False), wifi)
        assert writer.packets[0].payload == b'\x88\xbf\xff'

    def test_ethernet_payload_untouched(self, ethernet):
        acc, _, writer = make_accumulator()
        acc.process(fragment_record(5, b'\xff' * 14), ethernet)
        assert writer.packets[0].payload == b'\xff' * 14

    def test_metadata_consumed_by_next_frame(self, wifi):
        acc, cache, writer = make_accumulator()
        cache.store(make_context())

        acc.process(fragment_record(7, b'\x08\x00' * 8), wifi)
        acc.process(fragment_record(7, b'\x08\x00' * 8), wifi)

        assert cache.pending is None
        assert writer.packets[0].comment.startswith(b"Packet Metadata:")
        assert writer.packets[1].comment == b"PID=100"

    def test_metadata_survives_incomplete_frame(self, wifi):
        acc, cache, writer = make_accumulator()
        cache.store(make_context())
        acc.process(fragment_record(7, b'\x08\x00', end=False), wifi)
        assert cache.pending is not None
        acc.process(fragment_record(7, b'\x00\x00', start=False), wifi)
        assert cache.pending is None
        assert writer.packets[0].comment.startswith(b"Packet Metadata:")

    def test_oversized_fragment_resets(self, ethernet, caplog):
        acc, _, writer = make_accumulator(max_frame_size=100)

        acc.process(fragment_record(5, b'a' * 60, end=False), ethernet)
        with caplog.at_level(logging.WARNING):
            result = acc.process(fragment_record(5, b'b' * 50, start=False, end=False), ethernet)

        assert result is None
        assert "Packet too large (size = 110) and skipped" in caplog.text
        assert acc.frames_dropped == 1
        assert acc.buffer.offset == 0

        # The next frame is assembled from a clean buffer
        acc.process(fragment_record(5, b'c' * 20), ethernet)
        assert writer.packets[-1].payload == b'c' * 20

    def test_oversized_single_event_packet(self, ethernet):
        acc, _, writer = make_accumulator(max_frame_size=100)
        assert acc.process(fragment_record(5, b'a' * 101), ethernet) is None
        acc.process(fragment_record(5, b'b' * 100), ethernet)
        assert [len(p.payload) for p in writer.packets] == [100]

    def test_discard_until_end_policy(self, ethernet):
        acc, _, writer = make_accumulator(max_frame_size=100,
                                          drop_policy=DropPolicy.DISCARD_UNTIL_END)

        acc.process(fragment_record(5, b'a' * 60, end=False), ethernet)
        acc.process(fragment_record(5, b'b' * 50, start=False, end=False), ethernet)
        assert acc.discarding
        acc.process(fragment_record(5, b'c' * 10, start=False, end=False), ethernet)
        acc.process(fragment_record(5, b'd' * 10, start=False), ethernet)
        assert not acc.discarding
        assert writer.packets == []
        assert acc.fragments_discarded == 2

        acc.process(fragment_record(5, b'e' * 10), ethernet)
        assert writer.packets[0].payload == b'e' * 10

    def test_discard_policy_oversized_end_fragment(self, ethernet):
        acc, _, writer = make_accumulator(max_frame_size=100,
                                          drop_policy=DropPolicy.DISCARD_UNTIL_END)
        acc.process(fragment_record(5, b'a' * 200), ethernet)
        assert not acc.discarding
        acc.process(fragment_record(5, b'b' * 10), ethernet)
        assert len(writer.packets) == 1

    def test_missing_fragment_property(self, ethernet):
        acc, _, writer = make_accumulator()
        record = fragment_record(5, b'a' * 10)
        del record.properties['Fragment']

        with pytest.raises(PropertyError):
            acc.process(record, ethernet)
        assert acc.buffer.offset == 0
        assert writer.packets == []

    def test_frames_per_interface(self, ethernet, wifi):
        acc, _, _ = make_accumulator()
        acc.process(fragment_record(5, b'a' * 10), ethernet)
        acc.process(fragment_record(5, b'a' * 10), ethernet)
        acc.process(fragment_record(7, b'a' * 10), wifi)
        assert acc.frames_per_interface == {0: 2, 1: 1}
        assert acc.get_stats()['frames_completed'] == 3
