"""
Run report accumulation and rendering.

ReportBuilder folds per-file outcomes into counters while a run is in
progress and produces an immutable RunReport when the run is finalized.
Folding is guarded by a lock so outcomes can arrive from worker threads.
"""

import threading
from datetime import datetime, timezone
from typing import List, Tuple

from dirbackup.models import Failed, FailureRecord, RunReport, Skipped, Uploaded, UploadOutcome

SEPARATOR = '━' * 40


class ReportBuilder:
    """Mutable accumulator for a single run."""

    def __init__(self):
        self.success_count = 0
        self.fail_count = 0
        self.skipped_count = 0
        self.total_bytes = 0
        self._failures: List[Tuple[int, FailureRecord]] = []
        self._lock = threading.Lock()
        self._report = None

    def record(self, index: int, relative_path: str, outcome: UploadOutcome):
        """
        Fold one file's outcome into the report.

        Args:
            index: Position of the file in enumeration order
            relative_path: Relative path of the file
            outcome: Uploaded, Skipped or Failed

        Raises:
            RuntimeError: If the report has already been finalized
            TypeError: If outcome is not a known outcome type
        """
        with self._lock:
            if self._report is not None:
                raise RuntimeError("Cannot record outcomes on a finalized report")

            if isinstance(outcome, Uploaded):
                self.success_count += 1
                self.total_bytes += outcome.bytes_written
            elif isinstance(outcome, Skipped):
                self.skipped_count += 1
            elif isinstance(outcome, Failed):
                self.fail_count += 1
                self._failures.append((index, FailureRecord(relative_path, outcome.error)))
            else:
                raise TypeError(f"Unknown upload outcome: {outcome!r}")

    def finalize(self, started_at: datetime, base_prefix: str = '', cancelled: bool = False) -> RunReport:
        """
        Freeze the accumulated counters into a RunReport.

        Finalizing twice returns the same report.

        Args:
            started_at: Time the run started (timezone-aware)
            base_prefix: Remote prefix the run wrote under
            cancelled: Whether the run was cancelled before completing

        Returns:
            Immutable RunReport
        """
        with self._lock:
            if self._report is None:
                finalized_at = datetime.now(timezone.utc)
                elapsed = max((finalized_at - started_at).total_seconds(), 0.0)

                self._report = RunReport(
                    success_count=self.success_count,
                    fail_count=self.fail_count,
                    skipped_count=self.skipped_count,
                    total_bytes=self.total_bytes,
                    started_at=started_at,
                    finalized_at=finalized_at,
                    elapsed_seconds=round(elapsed, 2),
                    base_prefix=base_prefix,
                    cancelled=cancelled,
                    failed_files=tuple(record for _, record in sorted(self._failures, key=lambda item: item[0]))
                )

            return self._report


def format_bytes(num_bytes: float, precision: int = 2) -> str:
    """
    Format a byte count for humans.

    Args:
        num_bytes: Size in bytes
        precision: Decimal places to keep

    Returns:
        String such as '2.5 MB'
    """
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    value = float(num_bytes)
    i = 0

    while value > 1024 and i < len(units) - 1:
        value /= 1024
        i += 1

    rounded = round(value, precision)
    if rounded == int(rounded):
        rounded = int(rounded)

    return f"{rounded} {units[i]}"


def render_summary(report: RunReport) -> str:
    """
    Render a plain-text summary of a finalized report.

    Args:
        report: Finalized RunReport

    Returns:
        Multi-line summary with counts, size, duration and failed files
    """
    lines = [
        SEPARATOR,
        '  BACKUP SUMMARY',
        SEPARATOR,
        f"  Successful:  {report.success_count}",
        f"  Skipped:     {report.skipped_count}",
        f"  Failed:      {report.fail_count}",
        f"  Total size:  {format_bytes(report.total_bytes)}",
        f"  Duration:    {report.elapsed_seconds}s",
    ]

    if report.base_prefix:
        lines.append(f"  Destination: {report.base_prefix}/")

    lines.append(SEPARATOR)

    if report.failed_files:
        lines.append('')
        lines.append('Failed Files:')
        for failed in report.failed_files:
            lines.append(f"  • {failed.relative_path}")
            lines.append(f"    Error: {failed.error}")

    if report.cancelled:
        lines.append('')
        lines.append('Backup was cancelled before all files were processed.')

    return '\n'.join(lines)
