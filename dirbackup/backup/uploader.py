"""
Per-file upload with bounded retries.

FileUploader makes up to max_retries attempts to stream one file to the
storage backend. Every attempt opens its own stream and closes it before
the attempt ends, whatever the result. A backend write counts as done only
when it returns exactly True.

Attempts are driven by tenacity. Each attempt returns its error (or None)
instead of raising, so retrying is decided on the result and a cancellation
is never retried.
"""

import logging
import threading
import time
from typing import Callable, Optional

from tenacity import Retrying, retry_if_result, stop_after_attempt

from dirbackup.models import Failed, SourceFile, Uploaded, UploadOutcome
from .retry import backoff_delay
from .storage import StorageBackend, StorageError

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = 'Cancelled'


class StreamOpenError(Exception):
    """Raised when a source file cannot be opened for reading."""
    pass


class UploadCancelled(Exception):
    """Raised inside an attempt when the run has been cancelled."""
    pass


def _is_retryable(error: Optional[Exception]) -> bool:
    return error is not None and not isinstance(error, UploadCancelled)


class FileUploader:
    """
    Uploads single files to a storage backend, retrying with backoff.
    """

    def __init__(
        self,
        storage: StorageBackend,
        backoff: Callable[[int], float] = backoff_delay,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: Optional[threading.Event] = None
    ):
        """
        Initialize file uploader.

        Args:
            storage: Backend exposing write_stream()
            backoff: Maps the failed attempt number to a wait in seconds
            sleep: Blocking wait used between attempts when no cancel_event is set
            cancel_event: Optional event that aborts the upload when set
        """
        self.storage = storage
        self.backoff = backoff
        self.sleep = sleep
        self.cancel_event = cancel_event

    def upload(self, source_file: SourceFile, remote_key: str, max_retries: int) -> UploadOutcome:
        """
        Upload a file, retrying failed attempts.

        Args:
            source_file: File to upload
            remote_key: Destination key in the backend
            max_retries: Maximum number of attempts (>= 1)

        Returns:
            Uploaded with the declared file size, or Failed carrying the
            last error and the number of attempts made

        Raises:
            ValueError: If max_retries is lower than 1
        """
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")

        attempts = 0

        def attempt_once() -> Optional[Exception]:
            nonlocal attempts

            if self._is_cancelled():
                return UploadCancelled(CANCELLED_MESSAGE)

            attempts += 1

            try:
                self._attempt(source_file, remote_key)
            except UploadCancelled as e:
                return e
            except Exception as e:
                logger.warning(
                    f"Upload attempt {attempts}/{max_retries} failed for "
                    f"{source_file.relative_path}: {e}"
                )
                return e

            return None

        retrying = Retrying(
            stop=stop_after_attempt(max_retries),
            wait=lambda retry_state: self.backoff(retry_state.attempt_number),
            retry=retry_if_result(_is_retryable),
            sleep=self._wait,
            retry_error_callback=lambda retry_state: retry_state.outcome.result()
        )
        error = retrying(attempt_once)

        if error is None:
            logger.info(f"Backup successful: {source_file.relative_path}")
            return Uploaded(bytes_written=source_file.size)

        if isinstance(error, UploadCancelled):
            return self._cancelled(source_file, attempts)

        logger.error(
            f"Backup failed after {attempts} attempts: "
            f"{source_file.relative_path} - {error}"
        )
        return Failed(error=str(error), attempts=attempts)

    def _attempt(self, source_file: SourceFile, remote_key: str):
        """
        Run a single upload attempt.

        Raises:
            StreamOpenError: If the file cannot be opened
            StorageError: If the backend does not confirm the write
            UploadCancelled: If the run is cancelled mid-transfer
        """
        try:
            stream = source_file.open()
        except OSError as e:
            raise StreamOpenError(f"Failed to open file stream: {e}")

        with stream:
            result = self.storage.write_stream(
                remote_key,
                stream,
                size=source_file.size,
                cancellation_check=self._check_cancelled
            )

        if result is not True:
            raise StorageError(f"Upload returned {result!r}")

    def _check_cancelled(self):
        if self._is_cancelled():
            raise UploadCancelled(CANCELLED_MESSAGE)

    def _is_cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _wait(self, delay: float):
        """Wait before the next attempt; a set cancel_event ends the wait early."""
        logger.debug(f"Waiting {delay}s before retrying")

        if self.cancel_event is not None:
            self.cancel_event.wait(delay)
        else:
            self.sleep(delay)

    def _cancelled(self, source_file: SourceFile, attempts: int) -> Failed:
        logger.warning(f"Upload cancelled: {source_file.relative_path}")
        return Failed(error=CANCELLED_MESSAGE, attempts=attempts, cancelled=True)
