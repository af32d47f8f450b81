"""
Backup executor - orchestrates the backup workflow for tracked objects.

Workflow per object:
1. Check whether the object is due (skip otherwise)
2. Create the zip archive in scratch storage
3. Upload the archive to the remote folder
4. Record the run timestamp
5. Prune old archives from the remote folder

A failure in steps 2-4 marks the object as failed, sends an alert and
leaves the recorded timestamp untouched. Pruning problems are only logged.
In dry-run mode every step is decided and logged but nothing is written,
uploaded or deleted.
"""

import time
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from dbkeeper.models import (
    BackupConfig, BatchReport, ObjectResult, TrackedObject,
    STATUS_FAILED, STATUS_SKIPPED, STATUS_SUCCESS
)
from dbkeeper.scheduler import is_due, next_allowed, StateWriteError
from .compression import create_archive, generate_archive_filename, generate_date_tag, get_archive_size, CompressionError
from .storage import StorageError, UploadError
from .retention import RetentionManager, DEFAULT_KEEP


logger = logging.getLogger(__name__)

STAGE_DUE = 'due'
STAGE_ARCHIVING = 'archiving'
STAGE_UPLOADING = 'uploading'
STAGE_RECORDING_STATE = 'recording_state'
STAGE_PRUNING = 'pruning'
STAGE_DONE = 'done'
STAGE_SKIPPED = 'skipped'


class BackupExecutor:
    """
    Runs the backup pipeline for one tracked object.
    """

    def __init__(
        self,
        obj: TrackedObject,
        storage,
        state_store,
        alerts,
        scratch_dir: str,
        dry_run: bool = False,
        keep: int = DEFAULT_KEEP,
        now: Optional[int] = None,
        date_tag: Optional[str] = None
    ):
        """
        Initialize backup executor.

        Args:
            obj: TrackedObject to back up
            storage: Storage handler for the configured remote
            state_store: RunStateStore holding last-run timestamps
            alerts: Alert sink for failures
            scratch_dir: Directory for the temporary archive
            dry_run: Decide and log only, no side effects
            keep: Number of archives to keep in the remote folder
            now: Current time in epoch seconds (default: time.time())
            date_tag: YYYYMMDD tag for the archive name (default: from now)
        """
        self.obj = obj
        self.storage = storage
        self.state_store = state_store
        self.alerts = alerts
        self.scratch_dir = scratch_dir
        self.dry_run = dry_run
        self.keep = keep
        self.now = int(now if now is not None else time.time())
        self.date_tag = date_tag or generate_date_tag(datetime.fromtimestamp(self.now))
        self.stage = STAGE_DUE
        self.archive_name = generate_archive_filename(obj.local_path, self.date_tag)
        self.archive_path = None
        self.remote_path = None
        self.pruned = []
        self.logs = []

    def execute(self) -> ObjectResult:
        """
        Execute the pipeline.

        Returns:
            ObjectResult; per-object failures are reported, never raised
        """
        try:
            last_run = self.state_store.read_last_run(self.obj)
            if not is_due(self.now, last_run, self.obj.interval_days):
                return self._skip(last_run)

            self._execute_workflow()
        except (CompressionError, UploadError, StateWriteError) as e:
            return self._fail(str(e))
        except Exception as e:
            logger.exception("Unexpected error while backing up %s", self.obj.local_path)
            return self._fail(f"Unexpected error: {e}")

        self.stage = STAGE_DONE
        return self._result(STATUS_SUCCESS)

    def _skip(self, last_run: int) -> ObjectResult:
        self.stage = STAGE_SKIPPED
        next_run = next_allowed(last_run, self.obj.interval_days)
        try:
            next_label = f"{datetime.fromtimestamp(next_run):%Y-%m-%d %H:%M}"
        except (ValueError, OverflowError, OSError):
            next_label = f"epoch {next_run}"
        self._log(f"Skipping {self.obj.local_path} - not yet due for backup (next: {next_label})")
        return self._result(STATUS_SKIPPED)

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        prefix = "[dry-run] " if self.dry_run else ""

        # Step 1: Archive
        self.stage = STAGE_ARCHIVING
        self.archive_path = create_archive(
            self.obj.local_path,
            self.scratch_dir,
            self.date_tag,
            dry_run=self.dry_run
        )
        if self.dry_run:
            self._log(f"{prefix}Would archive {self.obj.local_path} to {self.archive_path}")
        else:
            size = get_archive_size(self.archive_path)
            self._log(f"Archived {self.obj.local_path} -> {self.archive_path} ({size / 1024 / 1024:.2f} MB)")

        # Step 2: Upload
        self.stage = STAGE_UPLOADING
        target = self.storage.describe(self.obj.remote_folder)
        if self.dry_run:
            self.remote_path = self.storage.describe(self.obj.remote_folder, self.archive_name)
            self._log(f"{prefix}Would upload {self.archive_path} to {target}")
        else:
            self._log(f"Uploading to {target}")
            self.remote_path = self.storage.upload(self.archive_path, self.obj.remote_folder)
            self._log(f"Uploaded: {self.remote_path}")

        # Step 3: Record run
        self.stage = STAGE_RECORDING_STATE
        if self.dry_run:
            self._log(f"{prefix}Would record last run {self.now} in {self.state_store.state_path(self.obj)}")
        elif not self.state_store.write_last_run(self.obj, self.now):
            logger.debug("Last run of %s left unchanged", self.obj.local_path)
        self._log(f"{prefix}Backup completed: {self.archive_name}")

        # Step 4: Retention
        self.stage = STAGE_PRUNING
        self._prune()

    def _prune(self):
        """Apply retention to the remote folder; failures do not fail the backup."""
        manager = RetentionManager(self.storage, keep=self.keep, dry_run=self.dry_run)
        try:
            self.pruned = manager.prune(self.obj.remote_folder)
        except StorageError as e:
            self._log(f"Retention cleanup failed for {self.storage.describe(self.obj.remote_folder)}: {e}", logging.WARNING)
            return
        except Exception:
            logger.exception("Retention cleanup crashed for %s", self.obj.remote_folder)
            return

        if self.pruned:
            verb = "Would remove" if self.dry_run else "Removed"
            self._log(f"{verb} {len(self.pruned)} old archive(s) from {self.storage.describe(self.obj.remote_folder)}")

    def _fail(self, reason: str) -> ObjectResult:
        failed_stage = self.stage
        self._log(f"Error during backup {self.obj.local_path} -> {self.obj.remote_folder} ({failed_stage}): {reason}", logging.ERROR)
        self.alerts.notify(self._alert_message(failed_stage, reason))
        return self._result(STATUS_FAILED, reason=reason)

    def _alert_message(self, stage: str, reason: str) -> str:
        mode = " (dry-run)" if self.dry_run else ""
        return (
            f"Backup failed{mode}\n"
            f"File: {self.obj.local_path}\n"
            f"Destination: {self.storage.describe(self.obj.remote_folder)}\n"
            f"Stage: {stage}\n"
            f"Error: {reason}"
        )

    def _result(self, status: str, reason: Optional[str] = None) -> ObjectResult:
        return ObjectResult(
            obj=self.obj,
            status=status,
            stage=self.stage,
            reason=reason,
            archive_name=self.archive_name if status != STATUS_SKIPPED else None,
            remote_path=self.remote_path,
            pruned=list(self.pruned),
            logs=list(self.logs)
        )

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a progress line with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


class BackupOrchestrator:
    """
    Processes every tracked object in order, one at a time.
    """

    def __init__(
        self,
        config: BackupConfig,
        storage,
        state_store,
        alerts,
        scratch_dir: str,
        dry_run: bool = False,
        keep: int = DEFAULT_KEEP,
        clock: Callable[[], float] = time.time
    ):
        self.config = config
        self.storage = storage
        self.state_store = state_store
        self.alerts = alerts
        self.scratch_dir = scratch_dir
        self.dry_run = dry_run
        self.keep = keep
        self.clock = clock

    def run(self) -> BatchReport:
        """
        Run the backup pipeline for all tracked objects.

        One object's failure never stops the batch.

        Returns:
            BatchReport with one ObjectResult per object
        """
        report = BatchReport(dry_run=self.dry_run)
        date_tag = generate_date_tag(datetime.fromtimestamp(self.clock()))

        logger.info(
            "Starting backup run: %d object(s), remote %s%s",
            len(self.config.objects), self.config.cloud.remote_name,
            " [dry-run]" if self.dry_run else ""
        )

        for obj in self.config.objects:
            executor = BackupExecutor(
                obj,
                storage=self.storage,
                state_store=self.state_store,
                alerts=self.alerts,
                scratch_dir=self.scratch_dir,
                dry_run=self.dry_run,
                keep=self.keep,
                now=int(self.clock()),
                date_tag=date_tag
            )
            report.results.append(executor.execute())

        logger.info(report.summary())
        return report
