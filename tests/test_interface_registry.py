#!/usr/bin/env python3
"""
Tests for interface discovery, ordering and IDB emission
"""

import logging
import random

import pytest

from trace_helpers import RecordingWriter
from ndis_pcapng import InterfaceRegistry, MediaType, classify_media
from ndis_pcapng.ndiscap import KW_MEDIA_NATIVE_802_11, KW_MEDIA_WIRELESS_WAN, KW_PACKET_END


class TestMediaClassification:

    def test_native_802_11(self):
        assert classify_media(KW_MEDIA_NATIVE_802_11 | KW_PACKET_END) is MediaType.IEEE802_11

    def test_wireless_wan(self):
        assert classify_media(KW_MEDIA_WIRELESS_WAN) is MediaType.RAW

    def test_802_11_wins_over_wwan(self):
        assert classify_media(KW_MEDIA_NATIVE_802_11 | KW_MEDIA_WIRELESS_WAN) is MediaType.IEEE802_11

    def test_default_ethernet(self):
        assert classify_media(KW_PACKET_END) is MediaType.ETHERNET

    def test_link_types(self):
        assert MediaType.ETHERNET.link_type == 1
        assert MediaType.RAW.link_type == 101
        assert MediaType.IEEE802_11.link_type == 105


class TestInterfaceRegistry:

    def test_record_and_lookup(self):
        registry = InterfaceRegistry()
        registry.record(5, 5, MediaType.ETHERNET)

        iface = registry.lookup(5)
        assert iface.lower_id == 5
        assert iface.miniport_id == 5
        assert iface.output_id is None
        assert registry.lookup(6) is None
        assert len(registry) == 1

    def test_inconsistent_media_keeps_original(self, caplog):
        registry = InterfaceRegistry()
        registry.record(9, 9, MediaType.IEEE802_11)

        with caplog.at_level(logging.WARNING):
            registry.record(9, 9, MediaType.ETHERNET)

        assert registry.lookup(9).media_type is MediaType.IEEE802_11
        assert registry.inconsistencies == 1
        assert "inconsistent media type" in caplog.text

    def test_same_media_is_silent(self, caplog):
        registry = InterfaceRegistry()
        registry.record(9, 9, MediaType.ETHERNET)
        with caplog.at_level(logging.WARNING):
            registry.record(9, 9, MediaType.ETHERNET)
        assert registry.inconsistencies == 0
        assert "inconsistent" not in caplog.text

    def test_sort_order(self):
        registry = InterfaceRegistry()
        # (lower, miniport): two LWFs over miniport 12, one of them with a
        # lower IfIndex than the miniport itself
        for lower, miniport in [(30, 12), (12, 12), (3, 12), (7, 7), (40, 7), (1, 20)]:
            registry.record(lower, miniport, MediaType.ETHERNET)

        ordered = registry.finalize()
        assert [(i.lower_id, i.miniport_id) for i in ordered] == [
            (7, 7), (40, 7), (12, 12), (3, 12), (30, 12), (1, 20),
        ]
        assert [i.output_id for i in ordered] == list(range(6))

    def test_miniport_first_regardless_of_lower_id(self):
        pairs = [(lower, 50) for lower in (1, 2, 49, 51, 99)] + [(50, 50)]
        random.Random(1234).shuffle(pairs)

        registry = InterfaceRegistry()
        for lower, miniport in pairs:
            registry.record(lower, miniport, MediaType.ETHERNET)

        ordered = registry.finalize()
        assert ordered[0].lower_id == 50
        assert [i.lower_id for i in ordered[1:]] == [1, 2, 49, 51, 99]

    def test_dense_output_ids(self):
        registry = InterfaceRegistry()
        lower_ids = random.Random(99).sample(range(1, 1000), 40)
        for lower in lower_ids:
            registry.record(lower, lower % 7, MediaType.ETHERNET)

        ordered = registry.finalize()
        assert len(ordered) == len(set(lower_ids))
        assert sorted(i.output_id for i in ordered) == list(range(len(ordered)))

    def test_record_after_finalize_rejected(self):
        registry = InterfaceRegistry()
        registry.finalize()
        with pytest.raises(RuntimeError):
            registry.record(1, 1, MediaType.ETHERNET)

    def test_emit_writes_idbs_in_order(self, caplog):
        registry = InterfaceRegistry()
        registry.record(14, 3, MediaType.IEEE802_11)
        registry.record(3, 3, MediaType.IEEE802_11)
        registry.record(2, 2, MediaType.RAW)
        registry.finalize()

        writer = RecordingWriter()
        with caplog.at_level(logging.INFO):
            registry.emit(writer, 65535)

        assert writer.interfaces == [(101, 65535), (105, 65535), (105, 65535)]
        assert "medium=mbb  ID=0\tIfIndex=2" in caplog.text
        assert "medium=wifi ID=2\tIfIndex=14\t(LWF over IfIndex 3)" in caplog.text

    def test_describe_miniport(self):
        registry = InterfaceRegistry()
        registry.record(5, 5, MediaType.ETHERNET)
        iface = registry.finalize()[0]
        assert iface.describe() == "IF: medium=eth  ID=0\tIfIndex=5"
