"""Command line entry point for tierbackup."""

import argparse
import logging
import os
import sys

from tierbackup import configure_logging
from tierbackup.config import config
from tierbackup.errors import ConfigurationError, StorageError
from tierbackup.backup.executor import run_configured_backup, EXIT_FAILED


EXIT_CONFIG_ERROR = 2

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='tierbackup',
        description='Archive a directory to S3 and prune old archives by backup type.'
    )
    parser.add_argument(
        '--config',
        choices=sorted(config.keys()),
        default=os.environ.get('TIERBACKUP_ENV', 'default'),
        help='Configuration profile (default: $TIERBACKUP_ENV or "default")'
    )
    parser.add_argument(
        '--no-log-file',
        action='store_true',
        help='Log to the console only'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    run_parser = subparsers.add_parser('run', help='Run one backup cycle')
    run_parser.add_argument(
        'backup_type',
        help='hourly, daily, weekly or monthly (other values use the hourly retention count)'
    )

    subparsers.add_parser('schedule', help='Run scheduled backups in the foreground')

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config_obj = config[args.config]

    configure_logging(config_obj, log_to_file=not args.no_log_file)

    if args.command == 'schedule':
        from tierbackup.scheduler import init_scheduler, start_scheduler, stop_scheduler

        try:
            init_scheduler(config_obj)
        except ValueError as e:
            logger.error(f"Invalid schedule: {e}")
            return EXIT_CONFIG_ERROR

        try:
            start_scheduler()
        except (KeyboardInterrupt, SystemExit):
            stop_scheduler()
        return 0

    try:
        result = run_configured_backup(args.backup_type, config_obj)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIG_ERROR
    except StorageError as e:
        logger.error(f"Failed to initialize storage: {e}")
        return EXIT_FAILED

    return result.exit_code


if __name__ == '__main__':
    sys.exit(main())
