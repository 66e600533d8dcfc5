#!/usr/bin/env python3
"""
Interface Registry - Discover and Order Capture Interfaces

Every ndiscap record names the interface it was captured on (LowerIfIndex)
and, on first sighting, the physical adapter that interface sits on
(MiniportIfIndex). Lightweight filter (LWF) drivers stacked over a
miniport show up as separate interfaces sharing its MiniportIfIndex.

Pass 1 fills the registry; finalize() then fixes a canonical order and
assigns the pcapng interface ids used by every Enhanced Packet Block:
- Primary: MiniportIfIndex ascending
- Within a miniport group, the miniport itself first
- Then LowerIfIndex ascending
"""

import logging
from typing import Dict, Iterator, List, Optional
from dataclasses import dataclass

from .ndiscap import MediaType

logger = logging.getLogger(__name__)


@dataclass
class Interface:
    """A capture interface discovered in the trace"""
    lower_id: int                     # LowerIfIndex (registry key)
    miniport_id: int                  # MiniportIfIndex of the underlying adapter
    media_type: MediaType
    output_id: Optional[int] = None   # pcapng interface id, set by finalize()

    @property
    def is_miniport(self) -> bool:
        return self.lower_id == self.miniport_id

    def sort_key(self):
        return (self.miniport_id, not self.is_miniport, self.lower_id)

    def describe(self) -> str:
        text = (f"IF: medium={self.media_type.short_name:<4} "
                f"ID={self.output_id}\tIfIndex={self.lower_id}")
        if not self.is_miniport:
            text += f"\t(LWF over IfIndex {self.miniport_id})"
        return text


class InterfaceRegistry:
    """
    Table of discovered interfaces keyed by LowerIfIndex.

    Written only during discovery; read-only once finalized.
    """

    def __init__(self):
        self._interfaces: Dict[int, Interface] = {}
        self._ordered: List[Interface] = []
        self.finalized = False
        self.inconsistencies = 0

    def lookup(self, lower_id: int) -> Optional[Interface]:
        return self._interfaces.get(lower_id)

    def record(self, lower_id: int, miniport_id: int, media_type: MediaType) -> Interface:
        """
        Record a sighting of an interface.

        New interfaces are inserted. A known interface seen with a different
        media type is reported and keeps its original classification.
        """
        if self.finalized:
            raise RuntimeError("Interface registry already finalized")

        iface = self._interfaces.get(lower_id)
        if iface is None:
            iface = Interface(lower_id=lower_id, miniport_id=miniport_id, media_type=media_type)
            self._interfaces[lower_id] = iface
            logger.debug(f"New interface: IfIndex={lower_id}, miniport={miniport_id}, "
                         f"media={media_type.short_name}")
        elif iface.media_type != media_type:
            self.inconsistencies += 1
            logger.warning(
                f"WARNING: inconsistent media type in packet events! "
                f"IfIndex={lower_id} recorded as {iface.media_type.short_name}, "
                f"now seen as {media_type.short_name}"
            )
        return iface

    def finalize(self) -> List[Interface]:
        """Sort interfaces and assign dense pcapng ids 0..N-1"""
        self._ordered = sorted(self._interfaces.values(), key=Interface.sort_key)
        for output_id, iface in enumerate(self._ordered):
            iface.output_id = output_id
        self.finalized = True
        return list(self._ordered)

    def emit(self, writer, max_frame_size: int):
        """
        Write one Interface Description Block per interface, in finalized order.

        Args:
            writer: Output writer with write_interface_description()
            max_frame_size: Snap length advertised for every interface
        """
        if not self.finalized:
            self.finalize()

        for iface in self._ordered:
            writer.write_interface_description(iface.media_type.link_type, max_frame_size)
            logger.info(iface.describe())

    def __len__(self) -> int:
        return len(self._interfaces)

    def __iter__(self) -> Iterator[Interface]:
        """Iterate in finalized order (empty before finalize())"""
        return iter(self._ordered)
