"""
Shared pytest fixtures for dirbackup tests.

This module provides fixtures for:
- Source directory trees
- An in-memory storage backend with scripted failures
- A recording sleep so retry tests never wait
- Mocked S3 via moto
- Finalized run reports
"""

import threading
from datetime import datetime, timezone

import pytest
import boto3
from moto import mock_aws

from dirbackup.backup.report import ReportBuilder
from dirbackup.backup.storage import StorageError
from dirbackup.models import Failed, Skipped, Uploaded


class MemoryStorage:
    """
    In-memory storage backend.

    Failures can be scripted per key: ``script(key, *results)`` queues
    results (exceptions are raised, anything else is returned) consumed by
    successive write attempts; ``always_fail`` makes every write to a key
    raise a StorageError.
    """

    def __init__(self):
        self.objects = {}
        self.write_calls = []
        self.exists_calls = []
        self.streams = []
        self.always_fail = set()
        self._scripts = {}
        self._lock = threading.Lock()

    def script(self, key, *results):
        self._scripts[key] = list(results)

    def test_connection(self):
        return True

    def exists(self, key):
        with self._lock:
            self.exists_calls.append(key)
        return key in self.objects

    def write_stream(self, key, stream, size=None, cancellation_check=None):
        with self._lock:
            self.write_calls.append(key)
            self.streams.append(stream)
            attempt = self.write_calls.count(key)

        if cancellation_check:
            cancellation_check()

        if key in self.always_fail:
            raise StorageError(f"Simulated failure {attempt} for {key}")

        planned = self._scripts.get(key)
        if planned:
            result = planned.pop(0)
            if isinstance(result, Exception):
                raise result
            if result is not True:
                return result

        self.objects[key] = stream.read()
        return True


@pytest.fixture
def memory_storage():
    """In-memory storage backend."""
    return MemoryStorage()


@pytest.fixture
def sleeps():
    """List that records every backoff wait requested."""
    return []


@pytest.fixture
def source_dir(tmp_path):
    """
    Create a source tree for backup runs.

    Creates:
    - docs/report.txt
    - notes.txt
    - photo.jpg (2048 bytes)
    """
    root = tmp_path / 'source'
    root.mkdir()

    (root / 'docs').mkdir()
    (root / 'docs' / 'report.txt').write_bytes(b'quarterly report')
    (root / 'notes.txt').write_bytes(b'notes')
    (root / 'photo.jpg').write_bytes(b'x' * 2048)

    return root


@pytest.fixture
def empty_dir(tmp_path):
    """Empty source directory."""
    root = tmp_path / 'empty'
    root.mkdir()
    return root


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')

        yield s3


@pytest.fixture
def started_at():
    return datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def success_report(started_at):
    """Finalized report of a run without failures."""
    builder = ReportBuilder()
    builder.record(0, 'docs/report.txt', Uploaded(bytes_written=2621440))
    builder.record(1, 'notes.txt', Skipped(reason='already exists'))
    return builder.finalize(started_at, base_prefix='gbackup')


@pytest.fixture
def failure_report(started_at):
    """Finalized report of a run with one failed file."""
    builder = ReportBuilder()
    builder.record(0, 'a.txt', Uploaded(bytes_written=10))
    builder.record(1, 'b.txt', Failed(error='S3 upload failed (SlowDown): try later', attempts=3))
    builder.record(2, 'c.txt', Skipped(reason='already exists'))
    return builder.finalize(started_at, base_prefix='gbackup')
