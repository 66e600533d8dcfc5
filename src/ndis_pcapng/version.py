"""
ndis-pcapng Version Information

Centralized version constants. All modules should import the version from
here rather than defining their own.
"""

# Follows the upstream converter's release numbering
NDIS_PCAPNG_VERSION = "1.4.0"

PROGRAM_NAME = "ndis-pcapng"


def get_version_string() -> str:
    """Get the version line printed by ``--version``."""
    return f"{PROGRAM_NAME} version {NDIS_PCAPNG_VERSION}"


def log_version_info(logger) -> None:
    """Log version information at startup.

    Args:
        logger: Logger instance to use
    """
    logger.info(get_version_string())
