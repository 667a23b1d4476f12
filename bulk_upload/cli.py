"""
Command-line interface for the bulk uploader.
"""
import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, List

from .coordinator import UploadCoordinator
from .exceptions import ContainerResolutionError, DirectoryNotFound
from .models import TransferConfig
from .resolver import S3ContainerResolver
from .scanner import FileScanner

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FILES_FAILED = 1
EXIT_RUN_NOT_STARTED = 2


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application.

    Args:
        verbose: Whether to enable debug logging
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def load_config(config_file: Optional[Path] = None) -> dict:
    """Load configuration from a JSON file.

    Args:
        config_file: Path to config file

    Returns:
        Dictionary of configuration values
    """
    if not config_file:
        return {}

    try:
        with open(config_file) as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Error loading config file: {e}")
        return {}


def build_transfer_config(args: argparse.Namespace, config: dict) -> TransferConfig:
    """Merge the config file's transfer settings with command line overrides.

    Args:
        args: Command line arguments
        config: Parsed config file

    Returns:
        TransferConfig for the run
    """
    settings = dict(config.get('transfer', {}))
    if args.max_concurrency is not None:
        settings['max_concurrency'] = args.max_concurrency
    if args.block_size is not None:
        settings['block_size_bytes'] = args.block_size
    if args.no_verify:
        settings['verify_integrity'] = False
    return TransferConfig.from_dict(settings)


def create_coordinator(args: argparse.Namespace, config: dict,
                       transfer_config: TransferConfig) -> UploadCoordinator:
    """Create and configure the upload coordinator.

    Args:
        args: Command line arguments
        config: Parsed config file
        transfer_config: Transfer settings of the run

    Returns:
        Configured UploadCoordinator instance
    """
    containers = dict(config.get('containers', {}))
    if args.bucket:
        containers[args.client_id] = args.bucket

    resolver = S3ContainerResolver(
        containers,
        key_prefix=args.prefix or config.get('key_prefix', ''),
        verify_integrity=transfer_config.verify_integrity
    )
    scanner = FileScanner(
        pattern=args.pattern or config.get('pattern', '*'),
        recursive=args.recursive or config.get('recursive', False)
    )
    log_dir = args.log_dir or config.get('log_dir')

    return UploadCoordinator(
        resolver,
        scanner=scanner,
        log_dir=Path(log_dir) if log_dir else None
    )


def handle_upload(args: argparse.Namespace) -> int:
    """Handle an upload run.

    Args:
        args: Command line arguments

    Returns:
        Process exit code
    """
    config = load_config(args.config)
    try:
        transfer_config = build_transfer_config(args, config)
    except (TypeError, ValueError) as e:
        logger.error(f"Invalid transfer settings: {e}")
        return EXIT_RUN_NOT_STARTED

    coordinator = create_coordinator(args, config, transfer_config)
    upload_root = Path(args.upload_root)
    deadline = args.timeout if args.timeout is not None else config.get('deadline_seconds')

    previous_handler = signal.signal(
        signal.SIGINT, lambda s, f: coordinator.abort("interrupted by user")
    )
    try:
        summary = coordinator.run_upload(
            args.client_id, upload_root, transfer_config, deadline=deadline
        )
    except DirectoryNotFound as e:
        logger.error(f"Error parsing files in the directory: {e}")
        return EXIT_RUN_NOT_STARTED
    except ContainerResolutionError as e:
        logger.error(f"Error resolving container: {e}")
        return EXIT_RUN_NOT_STARTED
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print(
        f"Uploaded {summary.succeeded}/{summary.total_jobs} file(s) "
        f"to {summary.container} in {summary.elapsed:.2f} seconds"
    )
    for outcome in summary.outcomes:
        if not outcome.success:
            print(f"  FAILED {outcome.file_name} [{outcome.error_kind.value}]: {outcome.message}")

    return EXIT_OK if summary.failed == 0 else EXIT_FILES_FAILED


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(description="Upload a directory to a client's storage container")
    parser.add_argument('-v', '--verbose', action='store_true',
                        help="Enable verbose logging")
    parser.add_argument('-c', '--config', type=Path,
                        help="Path to config file")
    parser.add_argument('client_id', type=str,
                        help="Client whose container receives the files")
    parser.add_argument('upload_root', type=str, nargs='?', default='upload',
                        help="Directory to upload (default: ./upload)")
    parser.add_argument('-b', '--bucket', type=str,
                        help="Destination bucket, overrides the config mapping")
    parser.add_argument('--prefix', type=str,
                        help="Prefix for object keys")
    parser.add_argument('-j', '--max-concurrency', type=int,
                        help="Maximum number of files uploaded at once")
    parser.add_argument('--block-size', type=int,
                        help="Upload block size in bytes")
    parser.add_argument('--no-verify', action='store_true',
                        help="Skip content-hash validation (faster, no integrity check)")
    parser.add_argument('-t', '--timeout', type=float,
                        help="Cancel unfinished uploads after this many seconds")
    parser.add_argument('-p', '--pattern', type=str,
                        help="File pattern to match")
    parser.add_argument('-r', '--recursive', action='store_true',
                        help="Include files in subdirectories")
    parser.add_argument('--log-dir', type=str,
                        help="Directory for JSON run logs")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    sys.exit(handle_upload(args))


if __name__ == '__main__':
    main()
