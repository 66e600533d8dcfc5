#!/usr/bin/env python3
"""
Command Line Interface for ndis-pcapng

    ndis-pcapng <infile> <outfile>
    ndis-pcapng --version

Exit status follows Windows error codes: 0 on success, 87
(ERROR_INVALID_PARAMETER) for usage errors, 32 (ERROR_SHARING_VIOLATION)
when a file is already open elsewhere, the OS error number for other
I/O failures, and 1 for fatal conversion errors.
"""

import sys
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from .version import get_version_string, log_version_info
from .config import ConverterConfig, load_config
from .converter import ConversionError, TwoPassConverter
from .pcapng_writer import PcapNgWriter
from .trace_source import (
    ERROR_SHARING_VIOLATION, JsonLinesTraceSource, TraceFormatError,
    TraceOpenError, is_sharing_violation,
)

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
ERROR_INVALID_PARAMETER = 87

USAGE = (
    "ndis-pcapng <infile> <outfile>\n"
    "Converts a packet capture from decoded ndiscap trace records to pcapng format.\n"
)


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser exiting with ERROR_INVALID_PARAMETER on usage errors"""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(ERROR_INVALID_PARAMETER, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog='ndis-pcapng',
        usage=USAGE,
        description='Convert ndiscap packet capture records to pcapng',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('paths', nargs='*', metavar='FILE',
                        help='Input trace (JSON Lines) and output pcapng file')
    parser.add_argument('-v', '--version', action='version', version=get_version_string())
    parser.add_argument('--config', '-c', help='Configuration file path (TOML)')
    parser.add_argument('--debug', '-d', action='store_true', help='Enable DEBUG logging')
    return parser


def setup_logging(level: int = logging.INFO):
    """Configure the root logger, reusing existing handlers if present"""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(levelname)s:%(name)s:%(message)s'))
        root_logger.addHandler(handler)
    else:
        for handler in root_logger.handlers:
            handler.setLevel(level)


def _os_exit_code(error: OSError) -> int:
    return error.errno or EXIT_FAILURE


def convert_file(input_path, output_path, config: Optional[ConverterConfig] = None) -> int:
    """
    Convert one trace file. Returns the process exit status.

    The output file is created (truncating any existing file) before the
    input is opened.
    """
    config = config or ConverterConfig()

    try:
        out_file = open(output_path, 'wb')
    except OSError as e:
        logger.error(f"Creating {output_path} failed with {e}")
        if is_sharing_violation(e):
            logger.error("The file appears to be open already.")
            return ERROR_SHARING_VIOLATION
        return _os_exit_code(e)

    with out_file:
        writer = PcapNgWriter(out_file)
        try:
            source = JsonLinesTraceSource(input_path)
            TwoPassConverter(source, writer, config).run()
        except TraceOpenError as e:
            logger.error(f"OpenTrace failed with {e.cause}")
            if e.already_open:
                logger.error("The file appears to be open already.")
                return ERROR_SHARING_VIOLATION
            return _os_exit_code(e.cause)
        except TraceFormatError as e:
            logger.error(f"ProcessTrace failed: {e}")
            return EXIT_FAILURE
        except ConversionError as e:
            logger.error(f"Conversion aborted: {e}")
            return EXIT_FAILURE
        except MemoryError:
            logger.error("out of memory")
            return EXIT_FAILURE
        except OSError as e:
            logger.error(f"Writing {output_path} failed with {e}")
            return _os_exit_code(e)

    return EXIT_SUCCESS


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the ndis-pcapng command"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if len(args.paths) != 2:
        parser.error(f"expected <infile> <outfile>, got {len(args.paths)} argument(s)")

    setup_logging(logging.DEBUG if args.debug else logging.INFO)

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        logger.error(f"❌ {e}")
        return ERROR_INVALID_PARAMETER
    except ValueError as e:
        logger.error(f"❌ Error loading configuration: {e}")
        return ERROR_INVALID_PARAMETER

    if not args.debug:
        setup_logging(getattr(logging, config.log_level))

    log_version_info(logger)
    input_path, output_path = (Path(p) for p in args.paths)
    return convert_file(input_path, output_path, config)


if __name__ == '__main__':
    sys.exit(main())
