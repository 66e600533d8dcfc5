#!/usr/bin/env python3
"""
Replayable Trace Sources

A trace source supplies decoded ndiscap records in capture order and can be
replayed from the beginning any number of times. The converter replays it
twice: once to discover interfaces, once to convert packets.

Sources:
- MemoryTraceSource: records held in a list (tests, embedding)
- JsonLinesTraceSource: one decoded record per line in a text file

Decoding raw ETL binaries into records is done upstream; this module only
carries records that already have named properties.

JSON Lines record format:
    {"provider": "2ed6006e-4729-4609-b423-3ee7bcd678ef", "id": 1001,
     "keywords": "0xc0000001", "pid": 4, "timestamp": 133000000000000000,
     "properties": {"LowerIfIndex": 5, "FragmentSize": 64,
                    "Fragment": "ffffffffffff..."}}

Integer properties are encoded little-endian to whatever length the reader
asks for; string properties are hex-encoded bytes.
"""

import errno
import json
import uuid
import logging
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Protocol, Union, Any
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Windows ERROR_SHARING_VIOLATION
ERROR_SHARING_VIOLATION = 32

PropertyValue = Union[bytes, int]


class PropertyError(Exception):
    """A named property could not be read from a trace record"""

    def __init__(self, name: str, reason: str):
        super().__init__(f"{name}: {reason}")
        self.name = name
        self.reason = reason


class TraceOpenError(Exception):
    """The trace input could not be opened"""

    def __init__(self, path, cause: OSError):
        super().__init__(f"Failed to open trace {path}: {cause}")
        self.path = path
        self.cause = cause
        self.already_open = is_sharing_violation(cause)

    @property
    def errno(self) -> Optional[int]:
        return self.cause.errno


class TraceFormatError(ValueError):
    """A trace record could not be decoded"""


def is_sharing_violation(exc: OSError) -> bool:
    """
    True if an OSError means the file is held open by another process.

    On Windows this is ERROR_SHARING_VIOLATION; POSIX platforms report a
    busy file as EBUSY or ETXTBSY.
    """
    if getattr(exc, 'winerror', None) == ERROR_SHARING_VIOLATION:
        return True
    return exc.errno in (errno.EBUSY, errno.ETXTBSY)


@dataclass
class TraceRecord:
    """One decoded trace event"""
    provider_id: uuid.UUID
    event_id: int
    keywords: int
    process_id: int
    timestamp: int          # 100 ns ticks since 1601-01-01 UTC
    properties: Dict[str, PropertyValue] = field(default_factory=dict)

    def get_property(self, name: str, length: int) -> bytes:
        """
        Read `length` bytes of a named property.

        Raises:
            PropertyError: Property missing, too short, or not encodable
        """
        if name not in self.properties:
            raise PropertyError(name, "property not present")

        value = self.properties[name]
        if isinstance(value, int):
            try:
                return value.to_bytes(length, 'little')
            except OverflowError:
                raise PropertyError(name, f"value {value} does not fit in {length} bytes")

        if len(value) < length:
            raise PropertyError(name, f"expected {length} bytes, have {len(value)}")
        return bytes(value[:length])

    def get_ulong(self, name: str) -> int:
        """Read a 32-bit unsigned property"""
        return int.from_bytes(self.get_property(name, 4), 'little')

    def has_keyword(self, mask: int) -> bool:
        return bool(self.keywords & mask)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'provider': str(self.provider_id),
            'id': self.event_id,
            'keywords': hex(self.keywords),
            'pid': self.process_id,
            'timestamp': self.timestamp,
            'properties': {
                name: value if isinstance(value, int) else bytes(value).hex()
                for name, value in self.properties.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TraceRecord':
        """
        Build a record from its JSON form.

        Raises:
            TraceFormatError: Missing fields or undecodable values
        """
        try:
            keywords = data.get('keywords', 0)
            if isinstance(keywords, str):
                keywords = int(keywords, 0)
            if isinstance(keywords, bool) or not isinstance(keywords, int):
                raise TraceFormatError("keywords must be an integer or hex string")

            provider = data['provider']
            if not isinstance(provider, str):
                raise TraceFormatError("provider must be a GUID string")

            raw_properties = data.get('properties', {})
            if not isinstance(raw_properties, dict):
                raise TraceFormatError("properties must be an object")

            properties: Dict[str, PropertyValue] = {}
            for name, value in raw_properties.items():
                if isinstance(value, bool) or not isinstance(value, (int, str)):
                    raise TraceFormatError(f"property {name} has unsupported type")
                properties[name] = value if isinstance(value, int) else bytes.fromhex(value)

            return cls(
                provider_id=uuid.UUID(provider),
                event_id=int(data['id']),
                keywords=keywords,
                process_id=int(data.get('pid', 0)),
                timestamp=int(data['timestamp']),
                properties=properties,
            )
        except TraceFormatError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise TraceFormatError(f"invalid trace record: {e}") from e


class TraceSource(Protocol):
    """
    Protocol for replayable record sources.

    Each call to replay() must yield the full record sequence from the start.
    """

    def replay(self) -> Iterator[TraceRecord]:
        ...


class MemoryTraceSource:
    """Trace source over an in-memory record list"""

    def __init__(self, records: Iterable[TraceRecord]):
        self.records: List[TraceRecord] = list(records)
        self.replay_count = 0

    def replay(self) -> Iterator[TraceRecord]:
        self.replay_count += 1
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)


class JsonLinesTraceSource:
    """
    Trace source reading decoded records from a JSON Lines file.

    The file is reopened for every replay so no records are retained
    between passes.
    """

    def __init__(self, path: Union[str, Path]):
        """
        Args:
            path: JSON Lines file with one record per line

        Raises:
            TraceOpenError: File cannot be opened for reading
        """
        self.path = Path(path)
        self.replay_count = 0
        try:
            with open(self.path, 'r', encoding='utf-8'):
                pass
        except OSError as e:
            raise TraceOpenError(self.path, e) from e

    def replay(self) -> Iterator[TraceRecord]:
        self.replay_count += 1
        logger.debug(f"Replaying {self.path} (pass {self.replay_count})")
        try:
            f = open(self.path, 'r', encoding='utf-8')
        except OSError as e:
            raise TraceOpenError(self.path, e) from e

        line_number = 0
        with f:
            try:
                for line_number, line in enumerate(f, start=1):
                    record = self._parse_line(line_number, line)
                    if record is not None:
                        yield record
            except UnicodeDecodeError as e:
                # Decoding is buffered, so the line number is approximate
                raise TraceFormatError(f"{self.path}:{line_number + 1}: {e}") from e

    def _parse_line(self, line_number: int, line: str) -> Optional[TraceRecord]:
        line = line.strip()
        if not line:
            return None
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise TraceFormatError(f"{self.path}:{line_number}: {e}") from e
        if not isinstance(data, dict):
            raise TraceFormatError(f"{self.path}:{line_number}: expected an object")
        try:
            return TraceRecord.from_dict(data)
        except TraceFormatError as e:
            raise TraceFormatError(f"{self.path}:{line_number}: {e}") from e


def write_json_lines(records: Iterable[TraceRecord], path: Union[str, Path]) -> int:
    """Write records to a JSON Lines file. Returns the number written."""
    count = 0
    with open(path, 'w', encoding='utf-8') as f:
        for record in records:
            f.write(json.dumps(record.to_dict()))
            f.write('\n')
            count += 1
    return count
