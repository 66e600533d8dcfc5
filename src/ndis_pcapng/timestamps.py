"""
Timestamp conversion for ndiscap trace records.

Trace records carry FILETIME-style ticks: 100 ns units since
1601-01-01T00:00:00Z. pcapng Enhanced Packet Blocks want microseconds
since the Unix epoch (the default if_tsresol), split into two 32-bit halves.
"""

from typing import Tuple

# 11644473600 seconds between 1601-01-01 and 1970-01-01, in microseconds
FILETIME_UNIX_OFFSET_USEC = 11_644_473_600_000_000

TICKS_PER_USEC = 10


def filetime_to_unix_usec(ticks: int) -> int:
    """Convert 100 ns ticks since 1601 to microseconds since 1970."""
    return (ticks // TICKS_PER_USEC) - FILETIME_UNIX_OFFSET_USEC


def split_timestamp(usec: int) -> Tuple[int, int]:
    """
    Split a 64-bit microsecond timestamp into (high, low) 32-bit halves.

    Values are taken modulo 2**64 so a pre-1970 capture wraps the same way
    an unsigned 64-bit integer would.
    """
    value = usec & 0xFFFFFFFFFFFFFFFF
    return (value >> 32) & 0xFFFFFFFF, value & 0xFFFFFFFF


def convert_timestamp(ticks: int) -> Tuple[int, int]:
    """Ticks since 1601 -> (ts_high, ts_low) microseconds since 1970."""
    return split_timestamp(filetime_to_unix_usec(ticks))
