"""
Single-slot cache for 802.11 receive metadata.

A PacketMetadata event precedes the frame it describes. The decoded
context waits here until the next frame completes, which consumes it
whether or not it was attached. A second metadata event before that
overwrites the first.
"""

import logging
from typing import Optional

from .ndiscap import DOT11_EXTSTA_RECV_CONTEXT_SIZE, Dot11RecvContext

logger = logging.getLogger(__name__)


class MetadataCache:
    """Holds at most one pending Dot11RecvContext"""

    def __init__(self):
        self._pending: Optional[Dot11RecvContext] = None
        self.stored = 0
        self.discarded = 0
        self.overwritten = 0

    @property
    def pending(self) -> Optional[Dot11RecvContext]:
        return self._pending

    def store(self, context: Dot11RecvContext):
        if self._pending is not None:
            self.overwritten += 1
            logger.debug("Unconsumed metadata overwritten")
        self._pending = context
        self.stored += 1

    def capture(self, record) -> bool:
        """
        Read a metadata event into the slot.

        Returns True if metadata was stored. A size mismatch is reported and
        leaves the slot untouched.

        Raises:
            PropertyError: MetadataSize or Metadata could not be read
        """
        length = record.get_ulong('MetadataSize')
        if length != DOT11_EXTSTA_RECV_CONTEXT_SIZE:
            self.discarded += 1
            logger.warning(f"Unknown Metadata length. Expected {DOT11_EXTSTA_RECV_CONTEXT_SIZE}, "
                           f"got {length}")
            return False

        data = record.get_property('Metadata', length)
        self.store(Dot11RecvContext.from_bytes(data))
        return True

    def consume(self) -> Optional[Dot11RecvContext]:
        """Return the pending metadata (if any) and clear the slot"""
        context, self._pending = self._pending, None
        return context
