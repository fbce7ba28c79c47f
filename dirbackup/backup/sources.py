"""
Source directory handling for backup runs.

LocalSource validates the source root and produces a deterministic,
lexicographically ordered snapshot of every regular file beneath it.
"""

import logging
import os
from fnmatch import fnmatch
from pathlib import Path
from typing import List, Optional

from dirbackup.models import SourceFile

logger = logging.getLogger(__name__)


class SourceUnavailable(Exception):
    """Raised when the source root is missing, not a directory, or unreadable."""
    pass


class LocalSource:
    """
    Handler for a local directory tree.

    Enumerates regular files recursively. Symlinked directories are not
    followed and the tree is never modified.
    """

    def __init__(self, root: str, exclude_patterns: Optional[List[str]] = None):
        """
        Initialize local source handler.

        Args:
            root: Directory to back up
            exclude_patterns: List of glob patterns to exclude (e.g., *.pyc, __pycache__, .git)
        """
        self.root = Path(root).expanduser()
        self.exclude_patterns = list(exclude_patterns or [])

    def _should_exclude(self, relative_path: str) -> bool:
        """
        Check if a path should be excluded based on exclude patterns.

        Patterns match against the full relative path or any single
        component of it, so ``__pycache__`` excludes the whole directory.

        Args:
            relative_path: POSIX path relative to the source root

        Returns:
            True if path matches any exclude pattern, False otherwise
        """
        if not self.exclude_patterns:
            return False

        parts = relative_path.split('/')

        for pattern in self.exclude_patterns:
            if fnmatch(relative_path, pattern):
                return True
            if any(fnmatch(part, pattern) for part in parts):
                return True
            if pattern.startswith('**/') and fnmatch(parts[-1], pattern[3:]):
                return True

        return False

    def validate(self) -> Path:
        """
        Check that the source root can be backed up.

        Returns:
            Resolved absolute path of the source root

        Raises:
            SourceUnavailable: If the root is missing, not a directory, or unreadable
        """
        if not self.root.exists():
            raise SourceUnavailable(f"Directory does not exist at path: {self.root}")

        if not self.root.is_dir():
            raise SourceUnavailable(f"Source path is not a directory: {self.root}")

        if not os.access(self.root, os.R_OK | os.X_OK):
            raise SourceUnavailable(f"Permission denied reading directory: {self.root}")

        return self.root.resolve()

    def enumerate(self) -> List[SourceFile]:
        """
        Snapshot all regular files under the source root.

        Returns:
            SourceFile list sorted by relative path

        Raises:
            SourceUnavailable: If the root fails validation
        """
        root = self.validate()
        files = []

        def on_error(error: OSError):
            logger.warning(f"Skipping unreadable directory {error.filename}: {error.strerror}")

        for directory, dirnames, filenames in os.walk(root, onerror=on_error):
            dirnames.sort()

            for name in filenames:
                full_path = Path(directory) / name

                # Skips sockets, FIFOs and broken or directory symlinks
                if not full_path.is_file():
                    continue

                relative_path = full_path.relative_to(root).as_posix()
                if self._should_exclude(relative_path):
                    continue

                files.append(SourceFile(
                    path=str(full_path),
                    relative_path=relative_path,
                    size=full_path.stat().st_size
                ))

        files.sort(key=lambda source_file: source_file.relative_path)
        return files
