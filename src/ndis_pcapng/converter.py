#!/usr/bin/env python3
"""
Two-Pass ndiscap -> pcapng Converter

pcapng needs every Interface Description Block before the first packet
that references it, but ndiscap only reveals interfaces as packets arrive.
The trace is therefore replayed twice:

    Pass 1 (DISCOVER): collect interfaces -> sort, assign ids, write IDBs
    Pass 2 (CONVERT):  metadata -> MetadataCache
                       fragments -> FragmentAccumulator -> FrameEmitter

Architecture:
    TraceSource.replay() → ConversionSession.consume() → registry / cache /
    accumulator → FrameEmitter → writer

Per-record problems (unreadable properties, bad metadata, oversized
fragments) are logged and the record is skipped. A pass-2 record naming an
interface pass 1 never saw means the two replays disagree and aborts the run.
"""

import time
import logging
from enum import Enum
from typing import Any, Dict, Optional, Protocol
from dataclasses import dataclass, field

from .config import ConverterConfig
from .ndiscap import EventId, classify_media, is_packet_event
from .interface_registry import InterfaceRegistry
from .metadata_cache import MetadataCache
from .fragment_accumulator import FragmentAccumulator
from .frame_emitter import FrameEmitter
from .trace_source import PropertyError, TraceSource

logger = logging.getLogger(__name__)


class ConversionError(Exception):
    """Fatal conversion failure"""


class UnknownInterfaceError(ConversionError):
    """A pass-2 record references an interface pass 1 did not record"""

    def __init__(self, lower_id: int):
        super().__init__(f"packet with unrecognized IfIndex {lower_id}")
        self.lower_id = lower_id


class ConversionState(Enum):
    """Orchestrator states"""
    DISCOVER = "discover"
    CONVERT = "convert"
    DONE = "done"


class CaptureWriter(Protocol):
    """
    Protocol for output writers - PcapNgWriter implements this.
    """

    def write_section_header(self) -> None:
        ...

    def write_interface_description(self, link_type: int, snap_len: int) -> None:
        ...

    def write_enhanced_packet(self, payload: bytes, interface_id: int, is_send: bool,
                              timestamp_high: int, timestamp_low: int,
                              comment: Optional[bytes] = None) -> None:
        ...


@dataclass
class ConversionMetrics:
    """Cumulative conversion metrics"""
    records_seen: int = 0
    records_ignored: int = 0
    property_failures: int = 0
    interfaces: int = 0
    media_inconsistencies: int = 0
    metadata_stored: int = 0
    metadata_discarded: int = 0
    frames_dropped: int = 0
    frames_converted: int = 0
    frames_per_interface: Dict[int, int] = field(default_factory=dict)
    start_time: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'records_seen': self.records_seen,
            'records_ignored': self.records_ignored,
            'property_failures': self.property_failures,
            'interfaces': self.interfaces,
            'media_inconsistencies': self.media_inconsistencies,
            'metadata_stored': self.metadata_stored,
            'metadata_discarded': self.metadata_discarded,
            'frames_dropped': self.frames_dropped,
            'frames_converted': self.frames_converted,
            'frames_per_interface': dict(self.frames_per_interface),
            'elapsed_seconds': time.time() - self.start_time,
        }


class ConversionSession:
    """
    Record handler holding all per-run state.

    The replay loop calls consume() once per record, sequentially.
    """

    def __init__(self, writer: CaptureWriter, config: Optional[ConverterConfig] = None):
        self.config = config or ConverterConfig()
        self.writer = writer
        self.state = ConversionState.DISCOVER
        self.metrics = ConversionMetrics()

        self.registry = InterfaceRegistry()
        self.metadata_cache = MetadataCache()
        self.emitter = FrameEmitter(writer, pid_comments=self.config.pid_comments)
        self.accumulator = FragmentAccumulator(
            self.emitter,
            self.metadata_cache,
            max_frame_size=self.config.max_frame_size,
            drop_policy=self.config.drop_policy,
        )

    def consume(self, record):
        """
        Handle one trace record in the current state.

        Raises:
            UnknownInterfaceError: CONVERT record for an unknown interface
            OSError: Writer failure
        """
        if self.state is ConversionState.DONE:
            raise RuntimeError("Conversion already finished")

        self.metrics.records_seen += 1
        if not is_packet_event(record):
            self.metrics.records_ignored += 1
            return

        try:
            lower_id = record.get_ulong('LowerIfIndex')
            if self.state is ConversionState.DISCOVER:
                self._discover(record, lower_id)
            else:
                self._convert(record, lower_id)
        except PropertyError as e:
            self.metrics.property_failures += 1
            logger.error(f"Failed to read property {e.name} from event {record.event_id}: {e.reason}")

    def _discover(self, record, lower_id: int):
        media_type = classify_media(record.keywords)
        iface = self.registry.lookup(lower_id)
        if iface is None:
            miniport_id = record.get_ulong('MiniportIfIndex')
        else:
            miniport_id = iface.miniport_id
        self.registry.record(lower_id, miniport_id, media_type)

    def _convert(self, record, lower_id: int):
        iface = self.registry.lookup(lower_id)
        if iface is None:
            # Interfaces came from this same trace in pass 1
            logger.error(f"ERROR: packet with unrecognized IfIndex {lower_id}")
            raise UnknownInterfaceError(lower_id)

        if record.event_id == EventId.PACKET_METADATA:
            self.metadata_cache.capture(record)
            return

        self.accumulator.process(record, iface)

    def begin_conversion(self):
        """Finalize discovery: order interfaces, write IDBs, switch to CONVERT"""
        if self.state is not ConversionState.DISCOVER:
            raise RuntimeError(f"Cannot begin conversion from state {self.state.value}")
        self.registry.finalize()
        self.registry.emit(self.writer, self.config.max_frame_size)
        self.metrics.interfaces = len(self.registry)
        self.metrics.media_inconsistencies = self.registry.inconsistencies
        self.state = ConversionState.CONVERT

    def finish(self) -> ConversionMetrics:
        self.state = ConversionState.DONE
        self.metrics.metadata_stored = self.metadata_cache.stored
        self.metrics.metadata_discarded = self.metadata_cache.discarded
        self.metrics.frames_dropped = self.accumulator.frames_dropped
        self.metrics.frames_converted = self.accumulator.frames_completed
        self.metrics.frames_per_interface = dict(self.accumulator.frames_per_interface)
        return self.metrics


class TwoPassConverter:
    """
    Drives both replays of a trace source into a ConversionSession.

    Example:
        with open('out.pcapng', 'wb') as f:
            converter = TwoPassConverter(JsonLinesTraceSource('trace.jsonl'),
                                         PcapNgWriter(f))
            metrics = converter.run()
    """

    def __init__(self, source: TraceSource, writer: CaptureWriter,
                 config: Optional[ConverterConfig] = None):
        self.source = source
        self.writer = writer
        self.config = config or ConverterConfig()
        self.session = ConversionSession(writer, self.config)

    @property
    def state(self) -> ConversionState:
        return self.session.state

    def _replay(self):
        for record in self.source.replay():
            self.session.consume(record)

    def run(self) -> ConversionMetrics:
        """
        Convert the whole trace.

        Raises:
            ConversionError: Fatal inconsistency between passes
            TraceOpenError / TraceFormatError: Input failure during a replay
            OSError: Output write failure
        """
        self.writer.write_section_header()

        logger.debug("Pass 1: discovering interfaces")
        self._replay()
        self.session.begin_conversion()

        logger.debug("Pass 2: converting packets")
        self._replay()
        metrics = self.session.finish()

        self._log_summary(metrics)
        return metrics

    def _log_summary(self, metrics: ConversionMetrics):
        for iface in self.session.registry:
            count = metrics.frames_per_interface.get(iface.output_id, 0)
            logger.info(f"IF {iface.output_id} (IfIndex={iface.lower_id}): {count} frames")
        if metrics.frames_dropped:
            logger.warning(f"{metrics.frames_dropped} oversized frames dropped")
        if metrics.property_failures:
            logger.warning(f"{metrics.property_failures} records skipped on property read failures")
        logger.info(f"Converted {metrics.frames_converted} frames")
