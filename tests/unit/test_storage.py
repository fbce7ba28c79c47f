"""
Unit tests for storage handlers (dirbackup/backup/storage.py).

Tests S3Storage and LocalStorage existence checks and streaming writes.
"""

import io
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from dirbackup.backup.storage import (
    S3Storage,
    LocalStorage,
    StorageError,
    create_storage
)


def make_s3_storage(**kwargs):
    return S3Storage(
        bucket_name=kwargs.pop('bucket_name', 'test-bucket'),
        region='us-east-1',
        access_key='test_access_key',
        secret_key='test_secret_key',
        **kwargs
    )


def client_error(code, operation='PutObject'):
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


class TestS3Storage:
    """Test S3Storage against moto."""

    def test_write_stream_uploads_object(self, mock_s3, tmp_path):
        test_file = tmp_path / 'report.txt'
        test_file.write_bytes(b'test data' * 100)

        storage = make_s3_storage()
        with open(test_file, 'rb') as stream:
            result = storage.write_stream('gbackup/report.txt', stream, size=900)

        assert result is True
        body = mock_s3.Object('test-bucket', 'gbackup/report.txt').get()['Body'].read()
        assert body == b'test data' * 100

    def test_write_zero_byte_object(self, mock_s3):
        storage = make_s3_storage()

        assert storage.write_stream('gbackup/empty.bin', io.BytesIO(b''), size=0) is True
        assert mock_s3.Object('test-bucket', 'gbackup/empty.bin').content_length == 0

    def test_exists_true_for_existing_object(self, mock_s3):
        mock_s3.Bucket('test-bucket').put_object(Key='gbackup/a.txt', Body=b'data')

        assert make_s3_storage().exists('gbackup/a.txt') is True

    def test_exists_false_for_missing_object(self, mock_s3):
        assert make_s3_storage().exists('gbackup/missing.txt') is False

    def test_test_connection_success(self, mock_s3):
        assert make_s3_storage().test_connection() is True

    def test_test_connection_missing_bucket(self, mock_s3):
        storage = make_s3_storage(bucket_name='no-such-bucket')

        with pytest.raises(StorageError):
            storage.test_connection()

    def test_missing_bucket_name_raises(self):
        with pytest.raises(StorageError):
            S3Storage(bucket_name=None)


class TestS3StorageErrors:
    """Test S3Storage error wrapping with a mocked client."""

    def test_client_error_on_put_raises_storage_error(self):
        storage = make_s3_storage()
        storage.s3_client = MagicMock()
        storage.s3_client.put_object.side_effect = client_error('AccessDenied')

        with pytest.raises(StorageError) as exc_info:
            storage.write_stream('gbackup/a.txt', io.BytesIO(b'data'), size=4)

        assert 'AccessDenied' in str(exc_info.value)

    def test_exists_non_404_error_raises(self):
        storage = make_s3_storage()
        storage.s3_client = MagicMock()
        storage.s3_client.head_object.side_effect = client_error('403', 'HeadObject')

        with pytest.raises(StorageError):
            storage.exists('gbackup/a.txt')

    def test_cancellation_check_runs_before_simple_upload(self):
        storage = make_s3_storage()
        storage.s3_client = MagicMock()

        class Stop(Exception):
            pass

        def check():
            raise Stop()

        with pytest.raises(Stop):
            storage.write_stream('gbackup/a.txt', io.BytesIO(b'data'), size=4, cancellation_check=check)

        storage.s3_client.put_object.assert_not_called()


class TestS3StorageMultipart:
    """Test chunked multipart uploads."""

    @pytest.fixture
    def storage(self):
        storage = make_s3_storage(multipart_threshold=8, chunk_size=4)
        storage.s3_client = MagicMock()
        storage.s3_client.create_multipart_upload.return_value = {'UploadId': 'upload-1'}
        storage.s3_client.upload_part.return_value = {'ETag': 'etag'}
        return storage

    def test_large_stream_uses_multipart(self, storage):
        result = storage.write_stream('gbackup/big.bin', io.BytesIO(b'x' * 10), size=10)

        assert result is True
        storage.s3_client.put_object.assert_not_called()
        assert storage.s3_client.upload_part.call_count == 3

        parts = storage.s3_client.complete_multipart_upload.call_args.kwargs['MultipartUpload']['Parts']
        assert [part['PartNumber'] for part in parts] == [1, 2, 3]

    def test_small_stream_uses_put_object(self, storage):
        storage.write_stream('gbackup/small.bin', io.BytesIO(b'x' * 8), size=8)

        storage.s3_client.put_object.assert_called_once()
        storage.s3_client.create_multipart_upload.assert_not_called()

    def test_part_failure_aborts_upload(self, storage):
        storage.s3_client.upload_part.side_effect = client_error('InternalError', 'UploadPart')

        with pytest.raises(StorageError):
            storage.write_stream('gbackup/big.bin', io.BytesIO(b'x' * 10), size=10)

        storage.s3_client.abort_multipart_upload.assert_called_once_with(
            Bucket='test-bucket',
            Key='gbackup/big.bin',
            UploadId='upload-1'
        )
        storage.s3_client.complete_multipart_upload.assert_not_called()

    def test_cancellation_aborts_upload(self, storage):
        calls = []

        class Stop(Exception):
            pass

        def check():
            calls.append(1)
            if len(calls) == 2:
                raise Stop()

        with pytest.raises(Stop):
            storage.write_stream('gbackup/big.bin', io.BytesIO(b'x' * 10), size=10, cancellation_check=check)

        assert storage.s3_client.upload_part.call_count == 1
        storage.s3_client.abort_multipart_upload.assert_called_once()


class TestLocalStorage:
    """Test LocalStorage for local filesystem operations."""

    def test_write_and_exists(self, tmp_path):
        storage = LocalStorage(str(tmp_path / 'remote'))

        assert storage.exists('gbackup/docs/a.txt') is False
        assert storage.write_stream('gbackup/docs/a.txt', io.BytesIO(b'data')) is True
        assert storage.exists('gbackup/docs/a.txt') is True
        assert (tmp_path / 'remote' / 'gbackup' / 'docs' / 'a.txt').read_bytes() == b'data'

    def test_creates_base_directory(self, tmp_path):
        LocalStorage(str(tmp_path / 'new' / 'dir'))

        assert (tmp_path / 'new' / 'dir').is_dir()

    def test_overwrites_existing_object(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        storage.write_stream('gbackup/a.txt', io.BytesIO(b'old'))
        storage.write_stream('gbackup/a.txt', io.BytesIO(b'new'))

        assert (tmp_path / 'gbackup' / 'a.txt').read_bytes() == b'new'

    def test_rejects_key_escaping_base(self, tmp_path):
        storage = LocalStorage(str(tmp_path / 'remote'))

        with pytest.raises(StorageError):
            storage.write_stream('../escape.txt', io.BytesIO(b'data'))

    def test_failed_write_leaves_no_partial_file(self, tmp_path):
        storage = LocalStorage(str(tmp_path))

        class BrokenStream(io.RawIOBase):
            def read(self, size=-1):
                raise OSError('disk read error')

        with pytest.raises(StorageError):
            storage.write_stream('gbackup/a.txt', BrokenStream())

        assert list((tmp_path / 'gbackup').iterdir()) == []
        assert storage.exists('gbackup/a.txt') is False

    def test_test_connection_writable_directory(self, tmp_path):
        assert LocalStorage(str(tmp_path)).test_connection() is True

    def test_test_connection_read_only_directory(self, tmp_path, monkeypatch):
        storage = LocalStorage(str(tmp_path))
        monkeypatch.setattr('dirbackup.backup.storage.os.access', lambda path, mode: False)

        with pytest.raises(StorageError):
            storage.test_connection()


class TestCreateStorage:
    """Test storage factory."""

    def test_local_backend(self, tmp_path):
        config = SimpleNamespace(LOCAL_BACKUP_DIR=str(tmp_path))

        assert isinstance(create_storage('local', config), LocalStorage)

    def test_s3_backend(self):
        config = SimpleNamespace(
            S3_BUCKET='test-bucket',
            S3_REGION='us-east-1',
            AWS_ACCESS_KEY_ID='key',
            AWS_SECRET_ACCESS_KEY='secret',
            S3_ENDPOINT_URL=None
        )

        storage = create_storage('s3', config)

        assert isinstance(storage, S3Storage)
        assert storage.bucket_name == 'test-bucket'

    def test_s3_backend_without_bucket(self):
        config = SimpleNamespace(
            S3_BUCKET=None,
            S3_REGION='us-east-1',
            AWS_ACCESS_KEY_ID=None,
            AWS_SECRET_ACCESS_KEY=None,
            S3_ENDPOINT_URL=None
        )

        with pytest.raises(StorageError):
            create_storage('s3', config)

    def test_invalid_backend(self, tmp_path):
        with pytest.raises(ValueError):
            create_storage('ftp', SimpleNamespace())
