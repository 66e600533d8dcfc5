"""
ndis-pcapng - Convert NDIS packet capture traces to pcapng

Converts decoded trace records from the Microsoft-Windows-NDIS-PacketCapture
ETW provider (ndiscap) into pcapng files readable by Wireshark.

Key Features:
- Two-pass conversion: interfaces discovered first, packets converted second
- Deterministic interface ordering (miniport first, then its filter drivers)
- Reassembly of packets split across multiple trace events
- 802.11 receive metadata attached as packet comments

Quick Start:
    from ndis_pcapng import JsonLinesTraceSource, PcapNgWriter, TwoPassConverter

    with open('capture.pcapng', 'wb') as f:
        converter = TwoPassConverter(JsonLinesTraceSource('capture.jsonl'),
                                     PcapNgWriter(f))
        metrics = converter.run()

    print(f"Converted {metrics.frames_converted} frames")
"""

from .version import NDIS_PCAPNG_VERSION

__version__ = NDIS_PCAPNG_VERSION

from .ndiscap import (
    NDISCAP_PROVIDER_ID, EventId, MediaType, Dot11RecvContext,
    classify_media, phy_type_name,
)
from .timestamps import filetime_to_unix_usec, split_timestamp, convert_timestamp
from .trace_source import (
    TraceRecord, TraceSource, MemoryTraceSource, JsonLinesTraceSource,
    PropertyError, TraceOpenError, TraceFormatError, write_json_lines,
)
from .interface_registry import Interface, InterfaceRegistry
from .metadata_cache import MetadataCache
from .fragment_accumulator import FragmentBuffer, FragmentAccumulator, DropPolicy
from .frame_emitter import FrameEmitter, ConvertedFrame
from .pcapng_writer import PcapNgWriter
from .config import ConverterConfig, load_config
from .converter import (
    TwoPassConverter, ConversionSession, ConversionState, ConversionMetrics,
    ConversionError, UnknownInterfaceError, CaptureWriter,
)

__all__ = [
    # Conversion
    "TwoPassConverter",
    "ConversionSession",
    "ConversionState",
    "ConversionMetrics",
    "ConversionError",
    "UnknownInterfaceError",
    "CaptureWriter",
    "ConverterConfig",
    "load_config",
    # Input
    "TraceRecord",
    "TraceSource",
    "MemoryTraceSource",
    "JsonLinesTraceSource",
    "write_json_lines",
    "PropertyError",
    "TraceOpenError",
    "TraceFormatError",
    # Components
    "Interface",
    "InterfaceRegistry",
    "MetadataCache",
    "FragmentBuffer",
    "FragmentAccumulator",
    "DropPolicy",
    "FrameEmitter",
    "ConvertedFrame",
    "PcapNgWriter",
    # Provider definitions
    "NDISCAP_PROVIDER_ID",
    "EventId",
    "MediaType",
    "Dot11RecvContext",
    "classify_media",
    "phy_type_name",
    # Timestamps
    "filetime_to_unix_usec",
    "split_timestamp",
    "convert_timestamp",
]
