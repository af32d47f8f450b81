"""
Command line entry point.

    dbkeeper [--dry-run]

Exit codes:
    0  run completed (per-object failures are alerted, not fatal)
    1  precondition failed (config, external tool, unreachable remote)
    2  another run holds the lock
"""

import sys
import signal
import logging
import argparse

from dbkeeper import configure_logging
from dbkeeper.alerts import create_alert_sink
from dbkeeper.config import Config, ConfigError, load_config, credentials_hint
from dbkeeper.lock import RunLock, RunLockedError
from dbkeeper.scheduler import RunStateStore
from dbkeeper.backup.compression import cleanup_scratch
from dbkeeper.backup.executor import BackupOrchestrator
from dbkeeper.backup.storage import create_storage, required_tools, find_missing_tools, StorageError


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PRECONDITION = 1
EXIT_LOCKED = 2


class PreconditionError(Exception):
    """Raised when the environment is not fit for a backup run."""
    pass


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='dbkeeper',
        description='Archive tracked database files, upload them and prune old remote copies.'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='show what would be done without archiving, uploading, deleting or recording anything'
    )
    return parser.parse_args(argv)


def _raise_on_sigterm(signum, frame):
    # Turn SIGTERM into SystemExit so cleanup in finally blocks runs
    raise SystemExit(128 + signum)


def prepare_storage(config):
    """
    Check external tools and remote reachability.

    Returns:
        Storage handler for the configured remote

    Raises:
        PreconditionError: If a tool is missing or the remote cannot be reached
    """
    remote_name = config.cloud.remote_name

    missing = find_missing_tools(required_tools(remote_name, Config.RCLONE_BINARY))
    if missing:
        raise PreconditionError(f"{', '.join(missing)} not installed")

    try:
        storage = create_storage(remote_name, rclone_binary=Config.RCLONE_BINARY, timeout=Config.RCLONE_TIMEOUT)
    except StorageError as e:
        raise PreconditionError(str(e))

    if not storage.is_reachable():
        raise PreconditionError(f"Remote '{remote_name}' is not accessible")

    return storage


def _abort(message: str, alerts) -> int:
    logger.error(message)
    alerts.notify(f"Backup run aborted: {message}")
    return EXIT_PRECONDITION


def run(dry_run: bool = False) -> int:
    """
    Run one backup pass with the settings from Config.

    Returns:
        Process exit code
    """
    if dry_run:
        logger.info("Dry-run mode enabled: no actions will be executed")

    config_path = Config.CONFIG_FILE

    try:
        config = load_config(config_path)
    except ConfigError as e:
        return _abort(str(e), create_alert_sink(credentials_hint(config_path), timeout=Config.ALERT_TIMEOUT))

    alerts = create_alert_sink(config.cloud.telegram, timeout=Config.ALERT_TIMEOUT)

    try:
        storage = prepare_storage(config)
    except PreconditionError as e:
        return _abort(str(e), alerts)

    orchestrator = BackupOrchestrator(
        config,
        storage=storage,
        state_store=RunStateStore(Config.STATE_DIR),
        alerts=alerts,
        scratch_dir=Config.SCRATCH_DIR,
        dry_run=dry_run,
        keep=Config.RETENTION_KEEP
    )
    report = orchestrator.run()

    for result in report.failed:
        logger.warning("Failed: %s (%s): %s", result.obj.local_path, result.stage, result.reason)

    return EXIT_OK


def main(argv=None) -> int:
    args = parse_args(argv)

    Config.ensure_directories()
    configure_logging(Config.LOG_FILE, debug=Config.DEBUG)

    signal.signal(signal.SIGTERM, _raise_on_sigterm)

    lock = RunLock(Config.LOCK_FILE)
    try:
        lock.acquire()
    except RunLockedError as e:
        logger.error(str(e))
        return EXIT_LOCKED

    try:
        return run(dry_run=args.dry_run)
    finally:
        # Scratch is only ours while we hold the lock
        if not args.dry_run:
            try:
                removed = cleanup_scratch(Config.SCRATCH_DIR)
                if removed:
                    logger.debug("Removed %d archive(s) from %s", removed, Config.SCRATCH_DIR)
            except OSError as e:
                logger.error("Failed to clean scratch directory %s: %s", Config.SCRATCH_DIR, e)
        lock.release()


if __name__ == '__main__':
    sys.exit(main())
