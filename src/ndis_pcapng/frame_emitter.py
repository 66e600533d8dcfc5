#!/usr/bin/env python3
"""
Frame Emitter - Annotate and Write Completed Frames

Builds the per-packet comment and hands each reassembled frame to the
output writer as an Enhanced Packet Block.

Comments:
- With 802.11 metadata: receive flags, PHY type, center frequency,
  MPDU count, RSSI, data rate and process id
- Without: "PID=<n>"

Comment sizes are bounded. A comment that would not fit (or is not ASCII)
is dropped entirely rather than truncated.
"""

import logging
from typing import Optional, Tuple
from dataclasses import dataclass

from .ndiscap import Dot11RecvContext

logger = logging.getLogger(__name__)

# Buffer sizes including the terminating NUL of the C-string form
METADATA_COMMENT_BUFFER = 65535
PID_COMMENT_BUFFER = 16


@dataclass
class ConvertedFrame:
    """A reassembled frame ready for the writer"""
    payload: bytes
    interface_id: int
    is_send: bool
    timestamp_high: int
    timestamp_low: int
    comment: Optional[bytes] = None

    @property
    def length(self) -> int:
        return len(self.payload)


def _bounded_ascii(text: str, buffer_size: int) -> Optional[bytes]:
    try:
        data = text.encode('ascii')
    except UnicodeEncodeError as e:
        logger.warning(f"Failed converting comment to ASCII: {e}")
        return None
    if len(data) >= buffer_size:
        logger.warning(f"Comment of {len(data)} bytes exceeds {buffer_size - 1} byte limit, omitted")
        return None
    return data


def format_metadata_comment(metadata: Dot11RecvContext, process_id: int) -> Optional[bytes]:
    text = (
        f"Packet Metadata: ReceiveFlags:0x{metadata.receive_flags:x}, "
        f"PhyType:{metadata.phy_type_name}, "
        f"CenterCh:{metadata.center_frequency}, "
        f"NumMPDUsReceived:{metadata.mpdu_count}, "
        f"RSSI:{metadata.rssi}, "
        f"DataRate:{metadata.data_rate}, "
        f"PID={process_id}"
    )
    return _bounded_ascii(text, METADATA_COMMENT_BUFFER)


def format_pid_comment(process_id: int) -> Optional[bytes]:
    return _bounded_ascii(f"PID={process_id}", PID_COMMENT_BUFFER)


class FrameEmitter:
    """
    Writes completed frames through the output writer.

    Args:
        writer: Output writer with write_enhanced_packet()
        pid_comments: Attach "PID=<n>" to frames without metadata
    """

    def __init__(self, writer, pid_comments: bool = True):
        self.writer = writer
        self.pid_comments = pid_comments
        self.frames_emitted = 0
        self.frames_with_metadata = 0

    def build_comment(self, process_id: int,
                      metadata: Optional[Dot11RecvContext] = None) -> Optional[bytes]:
        if metadata is not None:
            return format_metadata_comment(metadata, process_id)
        if self.pid_comments:
            return format_pid_comment(process_id)
        return None

    def emit(
        self,
        payload: bytes,
        interface_id: int,
        is_send: bool,
        timestamp: Tuple[int, int],
        process_id: int,
        metadata: Optional[Dot11RecvContext] = None,
    ) -> ConvertedFrame:
        """
        Annotate a frame and write it.

        Args:
            payload: Reassembled frame bytes
            interface_id: pcapng interface id of the owning interface
            is_send: Direction from the SEND keyword
            timestamp: (high, low) microseconds since 1970
            process_id: Process that owned the capturing thread
            metadata: Pending 802.11 receive context, if any

        Raises:
            OSError: Writer failure
        """
        ts_high, ts_low = timestamp
        frame = ConvertedFrame(
            payload=payload,
            interface_id=interface_id,
            is_send=is_send,
            timestamp_high=ts_high,
            timestamp_low=ts_low,
            comment=self.build_comment(process_id, metadata),
        )

        self.writer.write_enhanced_packet(
            frame.payload,
            frame.interface_id,
            frame.is_send,
            frame.timestamp_high,
            frame.timestamp_low,
            frame.comment,
        )

        self.frames_emitted += 1
        if metadata is not None:
            self.frames_with_metadata += 1
        return frame
