"""
Command line entry point.

    dirbackup [SOURCE] [--timestamped] [--skip-existing] [--max-retries N] [--no-notify]

Exit status:
    0  every file was uploaded or skipped
    1  at least one file failed
    2  invalid options or configured settings
    3  the source directory is missing or unreadable
    4  the storage backend could not be initialized or reached
"""

import logging
import signal
import threading
from datetime import datetime, timezone

import click

from dirbackup import configure_logging
from dirbackup.backup.executor import BackupExecutor, RunOptions
from dirbackup.backup.report import render_summary
from dirbackup.backup.sources import SourceUnavailable
from dirbackup.backup.storage import StorageError, create_storage
from dirbackup.config import get_config
from dirbackup.notifications import build_notifiers, deliver_report

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FILES_FAILED = 1
EXIT_SOURCE_UNAVAILABLE = 3
EXIT_STORAGE_UNAVAILABLE = 4


def _install_cancel_handler(cancel_event: threading.Event):
    """
    Make the first Ctrl-C cancel the run gracefully.

    A second Ctrl-C falls back to the default handler and interrupts.
    Returns the previous handler, or None when not on the main thread.
    """
    if threading.current_thread() is not threading.main_thread():
        return None

    def handle_sigint(signum, frame):
        click.echo('\nCancelling backup, finishing in-flight uploads...', err=True)
        cancel_event.set()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    return signal.signal(signal.SIGINT, handle_sigint)


@click.command(name='dirbackup')
@click.argument('source', required=False, type=click.Path(file_okay=True, dir_okay=True))
@click.option('--timestamped', is_flag=True, help='Create timestamped backup folders.')
@click.option('--skip-existing', is_flag=True, help='Skip files that already exist in the backend.')
@click.option('--max-retries', type=click.IntRange(min=1), default=None,
              help='Maximum upload attempts per file (default: 3).')
@click.option('--no-notify', is_flag=True, help='Disable report notification.')
@click.option('--backend', type=click.Choice(['s3', 'local']), default=None,
              help='Storage backend (default: STORAGE_BACKEND).')
@click.option('--prefix', default=None, help='Remote base prefix (default: gbackup).')
@click.option('--workers', type=click.IntRange(min=1), default=None,
              help='Number of files uploaded in parallel (default: 1).')
@click.option('--exclude', multiple=True, help='Glob pattern to exclude; may be repeated.')
@click.option('--max-backoff', type=click.FloatRange(min=0), default=None,
              help='Upper bound in seconds for the wait between retries (default: unbounded).')
@click.option('--env', 'env_name', default=None, help='Configuration name (default: DIRBACKUP_ENV).')
def main(source, timestamped, skip_existing, max_retries, no_notify, backend, prefix,
         workers, exclude, max_backoff, env_name):
    """Back up every file under SOURCE to the storage backend."""
    try:
        config = get_config(env_name)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='--env')

    configure_logging(config)

    source = source or config.BACKUP_SOURCE_DIR
    try:
        options = RunOptions(
            timestamped=timestamped,
            skip_existing=skip_existing,
            max_retries=max_retries or config.BACKUP_MAX_RETRIES,
            base_prefix=prefix or config.BACKUP_BASE_PREFIX,
            workers=workers or config.BACKUP_WORKERS,
            exclude_patterns=tuple(exclude),
            max_backoff=max_backoff if max_backoff is not None else config.BACKUP_MAX_BACKOFF
        )
    except ValueError as e:
        raise click.UsageError(f"Invalid backup settings: {e}")

    try:
        storage = create_storage(backend or config.STORAGE_BACKEND, config)
        storage.test_connection()
    except (StorageError, ValueError) as e:
        click.secho(f"Storage backend unavailable: {e}", fg='red', err=True)
        logger.error(f"Backup failed: storage backend unavailable: {e}")
        click.get_current_context().exit(EXIT_STORAGE_UNAVAILABLE)

    click.secho('Starting directory backup...', fg='green')
    click.echo()

    cancel_event = threading.Event()
    progress_lock = threading.Lock()
    bar = None

    def on_progress(source_file, outcome):
        with progress_lock:
            if bar is not None:
                bar.update(1)

    executor = BackupExecutor(storage, options, cancel_event=cancel_event, progress=on_progress)
    started_at = datetime.now(timezone.utc)

    try:
        files = executor.collect(source)
    except SourceUnavailable as e:
        click.secho(str(e), fg='red', err=True)
        logger.error(f"Backup failed: {e}")
        click.get_current_context().exit(EXIT_SOURCE_UNAVAILABLE)

    click.echo(f"Found {len(files)} file(s) to backup.")
    click.echo()

    previous_handler = _install_cancel_handler(cancel_event)
    try:
        with click.progressbar(length=len(files), label='Backing up', show_pos=True) as progress_bar:
            bar = progress_bar
            report = executor.run(files, started_at=started_at)
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)

    click.echo()
    display_summary(report)

    if not no_notify:
        notify(report, config)

    click.get_current_context().exit(EXIT_FILES_FAILED if report.has_failures else EXIT_SUCCESS)


def display_summary(report):
    click.echo(render_summary(report))
    click.echo()

    if report.total_files == 0:
        click.secho('No files found to backup.', fg='yellow')
    elif report.has_failures:
        click.secho('✗ Backup completed with errors.', fg='red')
    else:
        click.secho('✓ Backup completed successfully!', fg='green')


def notify(report, config) -> bool:
    """
    Deliver the report through the configured channels.

    Delivery problems are printed and logged; they never alter the exit status.
    """
    notifiers = build_notifiers(config)

    if not notifiers:
        click.secho('No notification channel configured. Skipping notification.', fg='yellow')
        click.secho('Set BACKUP_NOTIFICATION_EMAIL or BACKUP_WEBHOOK_URL to enable it.', fg='yellow')
        logger.warning('Backup notification skipped: no channel configured')
        return False

    if deliver_report(report, notifiers):
        click.secho('✓ Notification sent successfully.', fg='green')
        return True

    click.secho('✗ Notification failed to send. See the log for details.', fg='red', err=True)
    return False
