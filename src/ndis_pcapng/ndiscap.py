#!/usr/bin/env python3
"""
NDIS Packet Capture Provider Definitions

Constants and structures for the Microsoft-Windows-NDIS-PacketCapture
ETW provider ("ndiscap"), taken from the provider manifest and the
windot11 DDI headers.

Covers:
- Provider GUID and the event ids carrying packet data
- Keyword bits (media hints, direction, fragment boundaries)
- Media classification -> pcapng link type
- DOT11_EXTSTA_RECV_CONTEXT decoding (802.11 receive metadata)
"""

import struct
import uuid
import logging
from enum import Enum, IntEnum
from dataclasses import dataclass

logger = logging.getLogger(__name__)


# Microsoft-Windows-NDIS-PacketCapture {2ED6006E-4729-4609-B423-3EE7BCD678EF}
NDISCAP_PROVIDER_ID = uuid.UUID('2ed6006e-4729-4609-b423-3ee7bcd678ef')


class EventId(IntEnum):
    """ndiscap event ids that carry packet data"""
    PACKET_FRAGMENT = 1001
    PACKET_METADATA = 1002
    VMSWITCH_PACKET_FRAGMENT = 1003


PACKET_EVENT_IDS = frozenset(int(e) for e in EventId)

# Keyword bits from the ndiscap manifest
KW_MEDIA_WIRELESS_WAN = 0x200
KW_MEDIA_NATIVE_802_11 = 0x10000
KW_PACKET_START = 0x40000000
KW_PACKET_END = 0x80000000
KW_SEND = 0x100000000
KW_RECEIVE = 0x200000000


class MediaType(Enum):
    """Interface media, valued by pcapng link type"""
    ETHERNET = 1
    RAW = 101          # Mobile broadband (raw IP)
    IEEE802_11 = 105

    @property
    def link_type(self) -> int:
        return self.value

    @property
    def short_name(self) -> str:
        return _MEDIA_SHORT_NAMES[self]


_MEDIA_SHORT_NAMES = {
    MediaType.ETHERNET: 'eth',
    MediaType.IEEE802_11: 'wifi',
    MediaType.RAW: 'mbb',
}


def classify_media(keywords: int) -> MediaType:
    """
    Classify an interface from a record's keyword bitmask.

    Native 802.11 wins over wireless WAN; anything else is Ethernet.
    """
    if keywords & KW_MEDIA_NATIVE_802_11:
        return MediaType.IEEE802_11
    if keywords & KW_MEDIA_WIRELESS_WAN:
        return MediaType.RAW
    return MediaType.ETHERNET


def is_packet_event(record) -> bool:
    """True if the record is an ndiscap fragment or metadata event"""
    return (record.provider_id == NDISCAP_PROVIDER_ID and
            record.event_id in PACKET_EVENT_IDS)


# dot11_phy_type_* names, indexed by DOT11_PHY_TYPE value
DOT11_PHY_TYPE_NAMES = (
    "Unknown",      # 0 unknown
    "Fhss",         # 1
    "Dsss",         # 2
    "IrBaseband",   # 3
    "802.11a",      # 4 ofdm
    "802.11b",      # 5 hrdsss
    "802.11g",      # 6 erp
    "802.11n",      # 7 ht
    "802.11ac",     # 8 vht
    "802.11ad",     # 9 dmg
    "802.11ax",     # 10 he
)


def phy_type_name(phy_id: int) -> str:
    """Name for a DOT11_PHY_TYPE index; out-of-range maps to 'Unknown'"""
    if 0 <= phy_id < len(DOT11_PHY_TYPE_NAMES):
        return DOT11_PHY_TYPE_NAMES[phy_id]
    logger.debug(f"PHY type index {phy_id} out of range")
    return DOT11_PHY_TYPE_NAMES[0]


# DOT11_EXTSTA_RECV_CONTEXT as laid out by a 64-bit driver (pack 8):
#   NDIS_OBJECT_HEADER (Type, Revision, Size), uReceiveFlags, uPhyId,
#   uChCenterFrequency, usNumberOfMPDUsReceived, lRSSI, ucDataRate,
#   uSizeMediaSpecificInfo, pvMediaSpecificInfo, ullTimestamp
_RECV_CONTEXT = struct.Struct('<BBHIIIH2xiB3xIQQ')

DOT11_EXTSTA_RECV_CONTEXT_SIZE = _RECV_CONTEXT.size  # 48


@dataclass(frozen=True)
class Dot11RecvContext:
    """Decoded 802.11 receive context attached to the next frame"""
    header_type: int
    header_revision: int
    header_size: int
    receive_flags: int
    phy_id: int
    center_frequency: int
    mpdu_count: int
    rssi: int
    data_rate: int
    media_specific_info_size: int
    media_specific_info: int     # Driver pointer, meaningless post-capture
    timestamp: int

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Dot11RecvContext':
        """
        Decode the fixed-size structure.

        Raises:
            ValueError: If data is not exactly DOT11_EXTSTA_RECV_CONTEXT_SIZE bytes
        """
        if len(data) != DOT11_EXTSTA_RECV_CONTEXT_SIZE:
            raise ValueError(
                f"Expected {DOT11_EXTSTA_RECV_CONTEXT_SIZE} bytes, got {len(data)}"
            )
        return cls(*_RECV_CONTEXT.unpack(data))

    def to_bytes(self) -> bytes:
        return _RECV_CONTEXT.pack(
            self.header_type, self.header_revision, self.header_size,
            self.receive_flags, self.phy_id, self.center_frequency,
            self.mpdu_count, self.rssi, self.data_rate,
            self.media_specific_info_size, self.media_specific_info,
            self.timestamp,
        )

    @property
    def phy_type_name(self) -> str:
        return phy_type_name(self.phy_id)
