#!/usr/bin/env python3
"""
Fragment Accumulator - Reassemble Multi-Event Packets

ndiscap splits a packet across events using two keywords:
- A single-event packet carries both PACKET_START and PACKET_END
- A multi-event packet is a PACKET_START event, zero or more events with
  neither keyword, then a PACKET_END event

Fragments are appended to a bounded buffer until PACKET_END arrives; the
frame is then written and the buffer starts over. PACKET_START never needs
to be checked: a frame is whatever accumulated since the last completion.

Starting with Windows 8.1 only single-event packets are traced, so
multi-event reassembly matters for captures from older systems.

A fragment that would overflow the buffer drops the frame. What happens to
the rest of that frame depends on the drop policy:
- RESET: start over at offset 0 immediately (default)
- DISCARD_UNTIL_END: also skip the frame's remaining fragments, up to and
  including the next PACKET_END
"""

import logging
from enum import Enum
from typing import Dict, Optional

import numpy as np

from .ndiscap import KW_PACKET_END, KW_SEND, MediaType
from .timestamps import convert_timestamp
from .frame_emitter import ConvertedFrame

logger = logging.getLogger(__name__)

MAX_FRAME_SIZE = 65535

# Frame Control byte 1, "Protected Frame". Captures are already decrypted.
DOT11_PROTECTED_FLAG = 0x40


class DropPolicy(Enum):
    """Accumulator behaviour after an oversized fragment"""
    RESET = "reset"
    DISCARD_UNTIL_END = "discard_until_end"


class FragmentBuffer:
    """
    Fixed-capacity byte buffer with a write offset.

    append() refuses fragments that do not fit instead of truncating them.
    """

    def __init__(self, capacity: int = MAX_FRAME_SIZE):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._data = np.zeros(capacity, dtype=np.uint8)
        self.offset = 0

    @property
    def remaining(self) -> int:
        return self.capacity - self.offset

    def fits(self, length: int) -> bool:
        return length <= self.remaining

    def append(self, fragment: bytes) -> bool:
        """Append at the current offset. Returns False if capacity would be exceeded."""
        length = len(fragment)
        if not self.fits(length):
            return False
        self._data[self.offset:self.offset + length] = np.frombuffer(fragment, dtype=np.uint8)
        self.offset += length
        return True

    def clear_bits(self, index: int, mask: int):
        """Clear `mask` bits of the byte at `index`, if it has been written"""
        if index < self.offset:
            self._data[index] &= (~mask & 0xFF)

    def frame(self) -> bytes:
        return self._data[:self.offset].tobytes()

    def reset(self):
        self.offset = 0

    def __len__(self) -> int:
        return self.offset


class FragmentAccumulator:
    """
    Reassembly state machine for packet fragment events.

    Owns the fragment buffer; consumes the metadata cache at every frame
    completion and hands the frame to the emitter.
    """

    def __init__(
        self,
        emitter,
        metadata_cache,
        max_frame_size: int = MAX_FRAME_SIZE,
        drop_policy: DropPolicy = DropPolicy.RESET,
    ):
        """
        Initialize accumulator

        Args:
            emitter: FrameEmitter for completed frames
            metadata_cache: MetadataCache consumed at each completion
            max_frame_size: Buffer capacity in bytes
            drop_policy: Behaviour after an oversized fragment
        """
        self.emitter = emitter
        self.metadata_cache = metadata_cache
        self.buffer = FragmentBuffer(max_frame_size)
        self.drop_policy = drop_policy
        self.discarding = False

        # Statistics
        self.fragments_appended = 0
        self.frames_completed = 0
        self.frames_dropped = 0
        self.fragments_discarded = 0
        self.frames_per_interface: Dict[int, int] = {}

    def process(self, record, interface) -> Optional[ConvertedFrame]:
        """
        Process one fragment event.

        Args:
            record: Trace record with FragmentSize/Fragment properties
            interface: Owning Interface (already resolved)

        Returns:
            The written frame if this record completed one, else None

        Raises:
            PropertyError: FragmentSize or Fragment could not be read
            OSError: Writer failure
        """
        is_end = record.has_keyword(KW_PACKET_END)

        if self.discarding:
            self.fragments_discarded += 1
            if is_end:
                self.discarding = False
                logger.debug("End of dropped frame reached, resuming reassembly")
            return None

        length = record.get_ulong('FragmentSize')
        if not self.buffer.fits(length):
            self._drop(self.buffer.offset + length, is_end)
            return None

        fragment = record.get_property('Fragment', length)
        self.buffer.append(fragment)
        self.fragments_appended += 1

        if not is_end:
            return None
        return self._complete(record, interface)

    def _drop(self, frame_size: int, is_end: bool):
        self.frames_dropped += 1
        logger.warning(f"Packet too large (size = {frame_size}) and skipped")
        self.buffer.reset()
        if self.drop_policy is DropPolicy.DISCARD_UNTIL_END and not is_end:
            self.discarding = True

    def _complete(self, record, interface) -> ConvertedFrame:
        if interface.media_type is MediaType.IEEE802_11:
            self.buffer.clear_bits(1, DOT11_PROTECTED_FLAG)

        timestamp = convert_timestamp(record.timestamp)
        metadata = self.metadata_cache.consume()
        try:
            frame = self.emitter.emit(
                self.buffer.frame(),
                interface.output_id,
                record.has_keyword(KW_SEND),
                timestamp,
                record.process_id,
                metadata,
            )
        finally:
            self.buffer.reset()

        self.frames_completed += 1
        self.frames_per_interface[interface.output_id] = (
            self.frames_per_interface.get(interface.output_id, 0) + 1
        )
        return frame

    def get_stats(self) -> dict:
        """Get accumulator statistics"""
        return {
            'fragments_appended': self.fragments_appended,
            'frames_completed': self.frames_completed,
            'frames_dropped': self.frames_dropped,
            'fragments_discarded': self.fragments_discarded,
            'buffer_used': self.buffer.offset,
            'buffer_size': self.buffer.capacity,
        }
