from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, BinaryIO, Dict, Tuple, Union


@dataclass(frozen=True)
class SourceFile:
    """Snapshot of a regular file taken at enumeration time"""
    path: str  # absolute
    relative_path: str  # POSIX separators, used for the remote key
    size: int

    def open(self) -> BinaryIO:
        """Open a fresh binary stream positioned at the start of the file."""
        return open(self.path, 'rb')

    def __repr__(self):
        return f'<SourceFile {self.relative_path} size={self.size}>'


@dataclass(frozen=True)
class Uploaded:
    """File written to the backend"""
    bytes_written: int


@dataclass(frozen=True)
class Skipped:
    """File not transferred because the remote key already exists"""
    reason: str


@dataclass(frozen=True)
class Failed:
    """File that could not be written after all attempts"""
    error: str
    attempts: int
    cancelled: bool = False


UploadOutcome = Union[Uploaded, Skipped, Failed]


@dataclass(frozen=True)
class FailureRecord:
    """Terminal failure of a single file"""
    relative_path: str
    error: str

    def to_dict(self) -> Dict[str, str]:
        return {'file': self.relative_path, 'error': self.error}


@dataclass(frozen=True)
class RunReport:
    """
    Finalized summary of one backup run.

    Produced by ReportBuilder.finalize() once the traversal is complete and
    never mutated afterwards.
    """
    success_count: int
    fail_count: int
    skipped_count: int
    total_bytes: int
    started_at: datetime
    finalized_at: datetime
    elapsed_seconds: float
    base_prefix: str = ''
    cancelled: bool = False
    failed_files: Tuple[FailureRecord, ...] = field(default_factory=tuple)

    @property
    def total_files(self) -> int:
        return self.success_count + self.fail_count + self.skipped_count

    @property
    def has_failures(self) -> bool:
        return self.fail_count > 0

    @property
    def status(self) -> str:
        if self.has_failures:
            return 'completed with errors'
        return 'completed successfully'

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the report to JSON-compatible primitives."""
        return {
            'status': self.status,
            'success_count': self.success_count,
            'fail_count': self.fail_count,
            'skipped_count': self.skipped_count,
            'total_files': self.total_files,
            'total_bytes': self.total_bytes,
            'started_at': self.started_at.isoformat(),
            'finalized_at': self.finalized_at.isoformat(),
            'elapsed_seconds': self.elapsed_seconds,
            'base_prefix': self.base_prefix,
            'cancelled': self.cancelled,
            'failed_files': [record.to_dict() for record in self.failed_files],
        }

    def __repr__(self):
        return (
            f'<RunReport success={self.success_count} failed={self.fail_count} '
            f'skipped={self.skipped_count} bytes={self.total_bytes}>'
        )
