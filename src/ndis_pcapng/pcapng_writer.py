#!/usr/bin/env python3
"""
pcapng Writer

Writes the subset of pcapng needed for converted captures:
- Section Header Block (one per file)
- Interface Description Block (one per interface, no options)
- Enhanced Packet Block with opt_comment and epb_flags (direction)

All blocks are little-endian. Timestamps use the default interface
resolution (microseconds), passed in as 32-bit high/low halves.
"""

import struct
import logging
from typing import BinaryIO, Optional

logger = logging.getLogger(__name__)

BLOCK_TYPE_SHB = 0x0A0D0D0A
BLOCK_TYPE_IDB = 0x00000001
BLOCK_TYPE_EPB = 0x00000006

BYTE_ORDER_MAGIC = 0x1A2B3C4D

OPT_ENDOFOPT = 0
OPT_COMMENT = 1
OPT_EPB_FLAGS = 2

# epb_flags direction bits
EPB_FLAGS_INBOUND = 0x1
EPB_FLAGS_OUTBOUND = 0x2

# Option values are length-prefixed with a 16-bit field
MAX_OPTION_LENGTH = 0xFFFF


def _pad4(length: int) -> int:
    return (length + 3) & ~3


def _option(code: int, value: bytes) -> bytes:
    padding = b'\x00' * (_pad4(len(value)) - len(value))
    return struct.pack('<HH', code, len(value)) + value + padding


class PcapNgWriter:
    """
    Block writer over a binary file object.

    Write errors (OSError) propagate to the caller; the writer keeps no
    state besides block counters.

    Example:
        with open('out.pcapng', 'wb') as f:
            writer = PcapNgWriter(f)
            writer.write_section_header()
            writer.write_interface_description(link_type=1, snap_len=65535)
            writer.write_enhanced_packet(frame, 0, False, ts_high, ts_low, b'PID=4')
    """

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self.interfaces_written = 0
        self.packets_written = 0
        self.bytes_written = 0

    def _write_block(self, block_type: int, body: bytes):
        total_length = 12 + len(body)
        block = (struct.pack('<II', block_type, total_length) + body +
                 struct.pack('<I', total_length))
        self.stream.write(block)
        self.bytes_written += len(block)

    def write_section_header(self):
        """Write a Section Header Block, version 1.0, unknown section length"""
        body = struct.pack('<IHHq', BYTE_ORDER_MAGIC, 1, 0, -1)
        self._write_block(BLOCK_TYPE_SHB, body)
        logger.debug("Wrote section header")

    def write_interface_description(self, link_type: int, snap_len: int):
        """Write an Interface Description Block without options"""
        body = struct.pack('<HHI', link_type, 0, snap_len)
        self._write_block(BLOCK_TYPE_IDB, body)
        self.interfaces_written += 1
        logger.debug(f"Wrote interface description: linktype={link_type}, snaplen={snap_len}")

    def write_enhanced_packet(
        self,
        payload: bytes,
        interface_id: int,
        is_send: bool,
        timestamp_high: int,
        timestamp_low: int,
        comment: Optional[bytes] = None,
    ):
        """
        Write an Enhanced Packet Block.

        Args:
            payload: Frame bytes (captured length == original length)
            interface_id: Index of the interface in IDB order
            is_send: Outbound if True, inbound otherwise
            timestamp_high: Upper 32 bits of the microsecond timestamp
            timestamp_low: Lower 32 bits of the microsecond timestamp
            comment: Optional ASCII comment (opt_comment)
        """
        length = len(payload)
        body = bytearray(struct.pack(
            '<IIIII', interface_id, timestamp_high, timestamp_low, length, length
        ))
        body += payload
        body += b'\x00' * (_pad4(length) - length)

        if comment:
            if len(comment) > MAX_OPTION_LENGTH:
                raise ValueError(f"Comment too long for a pcapng option: {len(comment)} bytes")
            body += _option(OPT_COMMENT, comment)
        flags = EPB_FLAGS_OUTBOUND if is_send else EPB_FLAGS_INBOUND
        body += _option(OPT_EPB_FLAGS, struct.pack('<I', flags))
        body += _option(OPT_ENDOFOPT, b'')

        self._write_block(BLOCK_TYPE_EPB, bytes(body))
        self.packets_written += 1
