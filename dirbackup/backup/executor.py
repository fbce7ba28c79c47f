"""
Backup executor - orchestrates a complete backup run.

Workflow:
1. Validate the source directory (fatal if unavailable)
2. Enumerate regular files in lexicographic order
3. Compute the remote base prefix once for the whole run
4. For each file: skip if it already exists remotely (when enabled),
   otherwise upload it with retries
5. Fold every outcome into the run report
6. Finalize the report

Individual file failures never abort the run; they are captured in the
report. Only an unavailable source directory raises.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from dirbackup.models import Failed, Skipped, SourceFile, RunReport, UploadOutcome
from .report import ReportBuilder
from .retry import backoff_delay
from .sources import LocalSource
from .storage import StorageBackend
from .uploader import CANCELLED_MESSAGE, FileUploader

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y-%m-%d_%H%M%S_%f'
SKIP_REASON = 'already exists'


@dataclass(frozen=True)
class RunOptions:
    """Options for a single backup run"""
    timestamped: bool = False
    skip_existing: bool = False
    max_retries: int = 3
    base_prefix: str = 'gbackup'
    workers: int = 1
    exclude_patterns: Tuple[str, ...] = field(default_factory=tuple)
    max_backoff: Optional[float] = None

    def __post_init__(self):
        if not isinstance(self.max_retries, int) or self.max_retries < 1:
            raise ValueError(f"max_retries must be an integer >= 1, got {self.max_retries!r}")
        if not isinstance(self.workers, int) or self.workers < 1:
            raise ValueError(f"workers must be an integer >= 1, got {self.workers!r}")
        if not self.base_prefix.strip('/'):
            raise ValueError("base_prefix must not be empty")
        if self.max_backoff is not None:
            if not isinstance(self.max_backoff, (int, float)) or self.max_backoff < 0:
                raise ValueError(f"max_backoff must be a number >= 0, got {self.max_backoff!r}")


def compute_base_prefix(base_prefix: str, timestamped: bool, started_at: datetime) -> str:
    """
    Compute the remote root for a run.

    Args:
        base_prefix: Fixed prefix, e.g. 'gbackup'
        timestamped: Whether to append the run-start timestamp
        started_at: Run start time

    Returns:
        'gbackup' or 'gbackup/2024-01-15_120000_000000'
    """
    prefix = base_prefix.strip('/')

    if timestamped:
        return f"{prefix}/{started_at.strftime(TIMESTAMP_FORMAT)}"

    return prefix


def build_remote_key(base_prefix: str, relative_path: str) -> str:
    """Join the run prefix and a file's relative path into an object key."""
    return f"{base_prefix}/{relative_path.lstrip('/')}"


class BackupExecutor:
    """
    Orchestrates a backup run for one source directory.
    """

    def __init__(
        self,
        storage: StorageBackend,
        options: Optional[RunOptions] = None,
        uploader: Optional[FileUploader] = None,
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[Callable[[SourceFile, UploadOutcome], None]] = None
    ):
        """
        Initialize backup executor.

        Args:
            storage: Backend exposing exists() and write_stream()
            options: Run options (defaults to RunOptions())
            uploader: FileUploader to use; built from storage when omitted
            cancel_event: Optional event that cancels the run when set
            progress: Optional callback invoked once per resolved file
        """
        self.storage = storage
        self.options = options or RunOptions()
        self.cancel_event = cancel_event
        self.progress = progress

        if uploader is None:
            max_backoff = self.options.max_backoff
            uploader = FileUploader(
                storage,
                backoff=lambda attempt: backoff_delay(attempt, cap=max_backoff),
                cancel_event=cancel_event
            )
        self.uploader = uploader

    def collect(self, source_root: str) -> List[SourceFile]:
        """
        Validate source_root and snapshot the files to back up.

        Args:
            source_root: Directory to back up

        Returns:
            SourceFile list in lexicographic order

        Raises:
            SourceUnavailable: If source_root is missing or unreadable
        """
        source = LocalSource(source_root, exclude_patterns=list(self.options.exclude_patterns))
        files = source.enumerate()

        if not files:
            logger.info(f"No files found to backup in {source_root}")
        else:
            logger.info(f"Found {len(files)} file(s) to backup in {source_root}")

        return files

    def execute(self, source_root: str) -> RunReport:
        """
        Back up every file under source_root.

        Args:
            source_root: Directory to back up

        Returns:
            Finalized RunReport

        Raises:
            SourceUnavailable: If source_root is missing or unreadable
        """
        started_at = datetime.now(timezone.utc)
        files = self.collect(source_root)
        return self.run(files, started_at=started_at)

    def run(self, files: List[SourceFile], started_at: Optional[datetime] = None) -> RunReport:
        """
        Back up an already enumerated list of files.

        Args:
            files: Files returned by collect()
            started_at: Run start time (defaults to now)

        Returns:
            Finalized RunReport
        """
        if started_at is None:
            started_at = datetime.now(timezone.utc)

        base_prefix = compute_base_prefix(self.options.base_prefix, self.options.timestamped, started_at)
        report = ReportBuilder()

        logger.info(f"Backing up {len(files)} file(s) into {base_prefix}/")

        if self.options.workers == 1 or len(files) <= 1:
            for index, source_file in enumerate(files):
                self._process(index, source_file, base_prefix, report)
        else:
            with ThreadPoolExecutor(max_workers=self.options.workers, thread_name_prefix='dirbackup') as pool:
                futures = [
                    pool.submit(self._process, index, source_file, base_prefix, report)
                    for index, source_file in enumerate(files)
                ]
                for future in futures:
                    future.result()

        result = report.finalize(started_at, base_prefix=base_prefix, cancelled=self._is_cancelled())

        logger.info(
            f"Backup {result.status}: {result.success_count} uploaded, "
            f"{result.skipped_count} skipped, {result.fail_count} failed "
            f"in {result.elapsed_seconds}s"
        )
        return result

    def _process(self, index: int, source_file: SourceFile, base_prefix: str, report: ReportBuilder):
        outcome = self._backup_file(source_file, base_prefix)
        report.record(index, source_file.relative_path, outcome)

        if self.progress:
            self.progress(source_file, outcome)

    def _backup_file(self, source_file: SourceFile, base_prefix: str) -> UploadOutcome:
        """
        Resolve a single file to exactly one outcome.

        Args:
            source_file: File to back up
            base_prefix: Remote root computed for this run

        Returns:
            Uploaded, Skipped or Failed
        """
        if self._is_cancelled():
            return Failed(error=CANCELLED_MESSAGE, attempts=0, cancelled=True)

        remote_key = build_remote_key(base_prefix, source_file.relative_path)

        if self.options.skip_existing and self._exists(remote_key):
            logger.info(f"Skipping existing file: {source_file.relative_path}")
            return Skipped(reason=SKIP_REASON)

        try:
            return self.uploader.upload(source_file, remote_key, self.options.max_retries)
        except Exception as e:
            logger.exception(f"Unexpected error backing up {source_file.relative_path}")
            return Failed(error=str(e), attempts=0)

    def _exists(self, remote_key: str) -> bool:
        try:
            return self.storage.exists(remote_key) is True
        except Exception as e:
            logger.warning(f"Existence check failed for {remote_key}, uploading anyway: {e}")
            return False

    def _is_cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


def run_backup(source_root: str, storage: StorageBackend, options: Optional[RunOptions] = None, **kwargs) -> RunReport:
    """
    Run a backup of source_root into storage.

    Args:
        source_root: Directory to back up
        storage: Storage backend
        options: Run options
        **kwargs: Passed through to BackupExecutor (uploader, cancel_event, progress)

    Returns:
        Finalized RunReport

    Raises:
        SourceUnavailable: If source_root is missing or unreadable
    """
    executor = BackupExecutor(storage, options, **kwargs)
    return executor.execute(source_root)
