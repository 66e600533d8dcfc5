"""
Converter configuration

Optional TOML file; every setting has a default so the converter runs
without one.

Example (ndis-pcapng.toml):
    [converter]
    max_frame_size = 65535
    drop_policy = "reset"        # or "discard_until_end"
    pid_comments = true

    [logging]
    level = "INFO"
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union
from dataclasses import dataclass

import toml

from .fragment_accumulator import MAX_FRAME_SIZE, DropPolicy

logger = logging.getLogger(__name__)

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


@dataclass
class ConverterConfig:
    """Configuration for a conversion run"""
    max_frame_size: int = MAX_FRAME_SIZE     # Fragment buffer size and IDB snaplen
    drop_policy: DropPolicy = DropPolicy.RESET
    pid_comments: bool = True                # "PID=<n>" on frames without metadata
    log_level: str = "INFO"

    def __post_init__(self):
        if isinstance(self.drop_policy, str):
            try:
                self.drop_policy = DropPolicy(self.drop_policy)
            except ValueError:
                choices = ', '.join(p.value for p in DropPolicy)
                raise ValueError(f"drop_policy must be one of: {choices}")
        if isinstance(self.max_frame_size, bool) or not isinstance(self.max_frame_size, int):
            raise ValueError("max_frame_size must be an integer")
        # IDB snaplen is 32 bits; EPB lengths are too
        if not 0 < self.max_frame_size <= 0xFFFFFFFF:
            raise ValueError("max_frame_size must be between 1 and 4294967295")
        self.log_level = str(self.log_level).upper()
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {', '.join(LOG_LEVELS)}")

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'ConverterConfig':
        """Build from a parsed TOML document. Unknown keys are ignored."""
        converter = config.get('converter', {})
        logging_section = config.get('logging', {})

        kwargs = {}
        for key in ('max_frame_size', 'drop_policy', 'pid_comments'):
            if key in converter:
                kwargs[key] = converter[key]
        if 'level' in logging_section:
            kwargs['log_level'] = logging_section['level']
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'converter': {
                'max_frame_size': self.max_frame_size,
                'drop_policy': self.drop_policy.value,
                'pid_comments': self.pid_comments,
            },
            'logging': {
                'level': self.log_level,
            },
        }


def load_config(config_path: Optional[Union[str, Path]] = None) -> ConverterConfig:
    """
    Load converter configuration.

    Args:
        config_path: TOML file, or None for defaults

    Returns:
        ConverterConfig

    Raises:
        FileNotFoundError: If config_path is given but doesn't exist
        ValueError: Invalid TOML or setting
    """
    if config_path is None:
        return ConverterConfig()

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(config_path, 'r') as f:
            config = toml.load(f)
    except toml.TomlDecodeError as e:
        raise ValueError(f"Invalid config file {config_path}: {e}") from e

    logger.debug(f"Loaded config from {config_path}")
    return ConverterConfig.from_dict(config)
