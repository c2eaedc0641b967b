"""
Backup and restore of a whole database

backup() runs mysqldump and streams its output through the cipher and gzip
into a tagged backup file. restore() recreates the database and streams a
backup file back through gunzip and the cipher into the mysql client.

Known risk: restore drops the existing database before loading the backup.
An interrupted or failed restore leaves it dropped or partially restored.
"""

import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional, Union

from ..database.config import DEFAULT_CHARSET, DatabaseConfig
from ..database.connection import Connection
from ..database.migrations.version_manager import VersionManager
from ..errors import (BackupDirectoryError, BackupFileNotFoundError, BackupFileRequiredError,
                      ConfigurationError, DecompressionError, ExternalProcessError,
                      NotABackupFileError, NotAFileError)
from .framer import (FilenameContext, TagLike, default_filename, normalize_tag, select_latest,
                     verify, write_tag)
from .streams import GzipCompressor, GzipDecompressor, XorCipher, pump

logger = logging.getLogger(__name__)

PasswordLike = Optional[Union[str, bytes]]
ConnectionFactory = Callable[[DatabaseConfig], Connection]


@dataclass
class BackupOptions:
    """Database backup options"""
    backup_dir: str
    config: DatabaseConfig = field(default_factory=DatabaseConfig)
    # Password for obfuscating the file; None stores the dump as is
    password: PasswordLike = None
    tag: TagLike = None
    # Names must sort chronologically, restore takes the greatest one
    filename_generator: Optional[Callable[[FilenameContext], str]] = None


@dataclass
class RestoreOptions:
    """Database restore options"""
    config: DatabaseConfig = field(default_factory=DatabaseConfig)
    # Directory to pick the latest backup from when no file is given
    backup_dir: Optional[str] = None
    file: Optional[str] = None
    # Must match the password used for the backup
    password: PasswordLike = None
    tag: TagLike = None


def dump_command(config: DatabaseConfig) -> List[str]:
    return [config.dump_bin, '--hex-blob', *config.client_arguments()]


def restore_command(config: DatabaseConfig) -> List[str]:
    return [config.restore_bin, *config.client_arguments()]


def _ensure_backup_dir(backup_dir: str) -> Path:
    if not backup_dir:
        raise BackupDirectoryError("Backup directory is required")
    dirname = Path(os.getcwd(), backup_dir).resolve()
    if not dirname.exists():
        dirname.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created backup directory {dirname}")
    elif not dirname.is_dir():
        raise BackupDirectoryError(f"Backup directory {dirname} is not a directory")
    return dirname


def _read_stderr(stderr_file: BinaryIO) -> str:
    stderr_file.seek(0)
    return stderr_file.read().decode('utf-8', errors='replace').strip()


def _start(command: List[str], **kwargs) -> subprocess.Popen:
    try:
        return subprocess.Popen(command, **kwargs)
    except OSError as e:
        raise ExternalProcessError(f"Failed to start {command[0]}: {e}", command=command[0]) from e


def _kill(process: subprocess.Popen):
    if process.poll() is None:
        process.kill()
    process.wait()


def _run_dump(command: List[str], outfile: Path, tag: bytes, password: PasswordLike):
    """Stream the dumper's stdout into the backup file"""
    name = os.path.basename(command[0])
    with tempfile.TemporaryFile() as stderr_file:
        process = _start(command, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=stderr_file)
        try:
            with open(outfile, 'wb') as out:
                write_tag(out, tag)
                size = pump(process.stdout, out, [XorCipher(password), GzipCompressor()])
        except BaseException:
            _kill(process)
            outfile.unlink(missing_ok=True)
            raise
        finally:
            process.stdout.close()

        returncode = process.wait()
        if returncode != 0:
            stderr = _read_stderr(stderr_file)
            outfile.unlink(missing_ok=True)
            raise ExternalProcessError(
                f"{name} exited with code {returncode}: {stderr}",
                command=name, returncode=returncode, stderr=stderr,
            )
    logger.info(f"Dumped {size} bytes")


def _run_restore(command: List[str], source_file: Path, tag: bytes, password: PasswordLike):
    """Stream the backup payload into the restorer's stdin"""
    name = os.path.basename(command[0])
    with tempfile.TemporaryFile() as stderr_file:
        process = _start(command, stdin=subprocess.PIPE, stdout=subprocess.DEVNULL, stderr=stderr_file)
        input_closed = False
        try:
            with open(source_file, 'rb') as source:
                source.seek(len(tag))
                pump(source, process.stdin, [GzipDecompressor(), XorCipher(password)])
        except BrokenPipeError:
            # The restorer quit early; its exit status and stderr say why
            input_closed = True
        except BaseException:
            _kill(process)
            raise
        finally:
            try:
                process.stdin.close()
            except BrokenPipeError:
                input_closed = True

        returncode = process.wait()
        if returncode != 0:
            stderr = _read_stderr(stderr_file)
            raise ExternalProcessError(
                f"{name} exited with code {returncode}: {stderr}",
                command=name, returncode=returncode, stderr=stderr,
            )
        if input_closed:
            raise ExternalProcessError(f"{name} stopped reading before the backup was fully restored",
                                       command=name, returncode=returncode)


def backup(options: BackupOptions, connection_factory: Optional[ConnectionFactory] = None) -> Optional[Path]:
    """
    Back up the configured database

    Args:
        options: Backup options
        connection_factory: Opens a connection for a config

    Returns:
        Path of the backup file, or None when the database does not exist
    """
    connection_factory = connection_factory or Connection
    config = options.config
    try:
        if not config.database:
            raise ConfigurationError("Database name is required")
        dirname = _ensure_backup_dir(options.backup_dir)
        tag = normalize_tag(options.tag)

        conn = connection_factory(config)
        try:
            if not conn.database_exists(config.database):
                logger.warning(f"Nothing to be done, database [{config.database}] does not exist")
                return None
            filename = default_filename()
            if options.filename_generator:
                conn.use(config.database)
                version = VersionManager(conn).get_current_version()
                filename = options.filename_generator(FilenameContext(dbname=config.database, version=version))
        finally:
            conn.close()

        outfile = dirname / filename
        logger.info(f"Backing up database [{config.database}] to {outfile}")
        _run_dump(dump_command(config), outfile, tag, options.password)
        logger.info(f"Backup database to {outfile}")
        return outfile

    except Exception as e:
        logger.error(f"Backup failed: {e}")
        raise


def _resolve_backup_file(options: RestoreOptions) -> Path:
    filename = options.file
    if not filename and options.backup_dir:
        filename = select_latest(Path(os.getcwd(), options.backup_dir))
    if not filename:
        raise BackupFileRequiredError("Backup file is required")

    path = Path(os.getcwd(), filename).resolve()
    if not path.exists():
        raise BackupFileNotFoundError(f"File {path} not exists")
    if not path.is_file():
        raise NotAFileError(f"File {path} is not a file")
    return path


def restore(options: RestoreOptions, connection_factory: Optional[ConnectionFactory] = None) -> Path:
    """
    Replace the configured database with the contents of a backup

    Args:
        options: Restore options
        connection_factory: Opens a connection for a config

    Returns:
        Path of the restored backup file
    """
    connection_factory = connection_factory or Connection
    config = options.config
    try:
        if not config.database:
            raise ConfigurationError("Database name is required")
        path = _resolve_backup_file(options)
        tag = normalize_tag(options.tag)
        if not verify(path, tag):
            raise NotABackupFileError(f"File {path} is not a backup file", path=str(path))

        conn = connection_factory(config)
        try:
            if conn.database_exists(config.database):
                logger.info(f"Drop old database [{config.database}]")
                conn.drop_database(config.database)
            logger.info(f"Create new database [{config.database}]")
            conn.create_database(config.database, config.charset or DEFAULT_CHARSET)
        finally:
            conn.close()

        logger.info(f"Restoring database [{config.database}] from {path}")
        _run_restore(restore_command(config), path, tag, options.password)
        logger.info("Database restore successfully")
        return path

    except DecompressionError as e:
        logger.error(f"Restore failed, backup payload is damaged: {e}")
        raise
    except Exception as e:
        logger.error(f"Restore failed: {e}")
        raise
