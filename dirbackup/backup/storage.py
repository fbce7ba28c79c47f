"""
Storage backends for backed-up files.

Supports:
- S3Storage: Write objects to AWS S3 (or an S3-compatible endpoint)
- LocalStorage: Write objects into a local directory

Both expose the same two operations the backup core consumes: an existence
check and a streaming write that returns True only on a confirmed write.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

DEFAULT_MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100MB
DEFAULT_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class StorageBackend(Protocol):
    """Operations the backup core needs from a remote object store."""

    def exists(self, key: str) -> bool:
        ...

    def write_stream(
        self,
        key: str,
        stream: BinaryIO,
        size: Optional[int] = None,
        cancellation_check: Optional[Callable[[], None]] = None
    ) -> bool:
        ...


class S3Storage:
    """
    Handler for writing backup objects to AWS S3.

    Credentials are expected to be valid for the lifetime of the run; when
    no explicit keys are given boto3 resolves them from its default chain.
    """

    def __init__(
        self,
        bucket_name: str,
        region: str = 'us-east-1',
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        multipart_threshold: int = DEFAULT_MULTIPART_THRESHOLD,
        chunk_size: int = DEFAULT_CHUNK_SIZE
    ):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            region: AWS region (default: us-east-1)
            access_key: AWS access key ID (optional)
            secret_key: AWS secret access key (optional)
            endpoint_url: Custom endpoint for S3-compatible stores (optional)
            multipart_threshold: Size above which multipart upload is used
            chunk_size: Part size for multipart uploads
        """
        if not bucket_name:
            raise StorageError("S3 bucket name is not configured")

        self.bucket_name = bucket_name
        self.region = region
        self.multipart_threshold = multipart_threshold
        self.chunk_size = chunk_size

        client_kwargs = {'region_name': region}
        if access_key and secret_key:
            client_kwargs['aws_access_key_id'] = access_key
            client_kwargs['aws_secret_access_key'] = secret_key
        if endpoint_url:
            client_kwargs['endpoint_url'] = endpoint_url

        try:
            self.s3_client = boto3.client('s3', **client_kwargs)
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def exists(self, key: str) -> bool:
        """
        Check whether an object exists in the bucket.

        Args:
            key: S3 object key

        Returns:
            True if the object exists, False if S3 reports it missing

        Raises:
            StorageError: If the check itself fails
        """
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise StorageError(f"S3 existence check failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 existence check failed: {e}")

    def write_stream(
        self,
        key: str,
        stream: BinaryIO,
        size: Optional[int] = None,
        cancellation_check: Optional[Callable[[], None]] = None
    ) -> bool:
        """
        Upload the contents of a stream to S3.

        Args:
            key: S3 object key
            stream: Readable binary stream positioned at the start
            size: Declared size in bytes, used to pick multipart upload
            cancellation_check: Optional function called before each chunk;
                it raises to abort the upload

        Returns:
            True once S3 has accepted the object

        Raises:
            StorageError: If upload fails
        """
        try:
            if size is not None and size > self.multipart_threshold:
                self._multipart_upload(stream, key, cancellation_check)
            else:
                if cancellation_check:
                    cancellation_check()
                self.s3_client.put_object(
                    Bucket=self.bucket_name,
                    Key=key,
                    Body=stream
                )
            return True

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")

    def _multipart_upload(
        self,
        stream: BinaryIO,
        key: str,
        cancellation_check: Optional[Callable[[], None]] = None
    ):
        """
        Upload a large stream using multipart upload with cancellation support.

        Only one chunk is held in memory at a time. The upload is aborted on
        any error, including a cancellation raised by cancellation_check.

        Args:
            stream: Readable binary stream
            key: S3 object key
            cancellation_check: Optional function to call between chunks
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            part_number = 1

            while True:
                if cancellation_check:
                    cancellation_check()

                data = stream.read(self.chunk_size)
                if not data:
                    break

                response = self.s3_client.upload_part(
                    Bucket=self.bucket_name,
                    Key=key,
                    PartNumber=part_number,
                    UploadId=upload_id,
                    Body=data
                )

                parts.append({
                    'PartNumber': part_number,
                    'ETag': response['ETag']
                })

                part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except BaseException:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload for {key}: {abort_error}")
            raise

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Returns:
            True if connection is successful

        Raises:
            StorageError: If connection test fails
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == '404':
                raise StorageError(f"Bucket does not exist: {self.bucket_name}")
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}")
            else:
                raise StorageError(f"S3 connection test failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to connect to S3: {e}")


class LocalStorage:
    """
    Handler for writing backup objects into a local directory.

    Keys map to paths below base_path, e.g. {base_path}/gbackup/docs/a.txt.
    Writes go through a temporary file that is renamed into place, so a
    failed write never leaves a partial object behind.
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Base directory for stored objects
        """
        self.base_path = Path(base_path).expanduser()

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create local storage directory: {e}")

        self.base_path = self.base_path.resolve()

    def _resolve_key(self, key: str) -> Path:
        dest_path = (self.base_path / key).resolve()

        if dest_path == self.base_path or self.base_path not in dest_path.parents:
            raise StorageError(f"Key escapes storage directory: {key}")

        return dest_path

    def exists(self, key: str) -> bool:
        return self._resolve_key(key).is_file()

    def write_stream(
        self,
        key: str,
        stream: BinaryIO,
        size: Optional[int] = None,
        cancellation_check: Optional[Callable[[], None]] = None
    ) -> bool:
        """
        Copy the contents of a stream to local storage.

        Args:
            key: Object key, relative to base_path
            stream: Readable binary stream
            size: Unused, kept for interface consistency
            cancellation_check: Optional function called before the copy

        Returns:
            True once the object is in place

        Raises:
            StorageError: If storage fails
        """
        dest_path = self._resolve_key(key)

        if cancellation_check:
            cancellation_check()

        temp_path = None
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)

            fd, temp_path = tempfile.mkstemp(dir=str(dest_path.parent), prefix='.dirbackup_')
            with os.fdopen(fd, 'wb') as f:
                shutil.copyfileobj(stream, f)

            os.replace(temp_path, dest_path)
            temp_path = None
            return True

        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to store locally: {e}")
        finally:
            if temp_path and os.path.exists(temp_path):
                os.remove(temp_path)

    def test_connection(self) -> bool:
        """
        Check that the base directory accepts new objects.

        Returns:
            True if the directory is writable

        Raises:
            StorageError: If the directory cannot be written to
        """
        if not os.access(self.base_path, os.W_OK | os.X_OK):
            raise StorageError(f"Local storage directory is not writable: {self.base_path}")
        return True


def create_storage(backend: str, config):
    """
    Factory function to create the configured storage backend.

    Args:
        backend: 's3' or 'local'
        config: Config class or object carrying the storage settings

    Returns:
        S3Storage or LocalStorage instance

    Raises:
        ValueError: If backend is invalid
        StorageError: If the backend cannot be initialized
    """
    if backend == 's3':
        return S3Storage(
            bucket_name=config.S3_BUCKET,
            region=config.S3_REGION,
            access_key=config.AWS_ACCESS_KEY_ID,
            secret_key=config.AWS_SECRET_ACCESS_KEY,
            endpoint_url=config.S3_ENDPOINT_URL
        )
    elif backend == 'local':
        return LocalStorage(config.LOCAL_BACKUP_DIR)
    else:
        raise ValueError(f"Invalid storage backend: {backend}")
