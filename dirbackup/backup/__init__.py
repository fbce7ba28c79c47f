"""
Backup module for dirbackup.

This module handles the core backup functionality including:
- Source directory enumeration
- Storage backends (S3 and local)
- Per-file upload with retry and backoff
- Run orchestration and report aggregation
"""

from .executor import BackupExecutor, RunOptions, run_backup
from .report import ReportBuilder, render_summary
from .sources import LocalSource, SourceUnavailable
from .storage import S3Storage, LocalStorage, StorageError, create_storage
from .uploader import FileUploader

__all__ = [
    'BackupExecutor',
    'RunOptions',
    'run_backup',
    'ReportBuilder',
    'render_summary',
    'LocalSource',
    'SourceUnavailable',
    'S3Storage',
    'LocalStorage',
    'StorageError',
    'create_storage',
    'FileUploader'
]
