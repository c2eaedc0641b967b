"""
Error Types for dbkeeper

Custom exception classes grouped by failure category so callers can tell
configuration mistakes, validation failures, external process failures and
database failures apart. Every error carries a human readable message.
"""

from datetime import datetime, timezone
from typing import Optional


class DbKeeperError(Exception):
    """Base exception for dbkeeper errors"""
    pass


class ConfigurationError(DbKeeperError):
    """Missing directory or file, bad version target, nothing declared"""
    pass


class ValidationError(DbKeeperError):
    """Declared data or input files failed validation"""
    pass


class ExternalProcessError(DbKeeperError):
    """Failures from the dump/restore executables or the stream chain feeding them"""
    def __init__(self, message: str, command: str = "Unknown", returncode: Optional[int] = None,
                 stderr: Optional[str] = None):
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.timestamp = datetime.now(timezone.utc)


class DatabaseError(DbKeeperError):
    """Database operation errors, tagged with the SQL when known"""
    def __init__(self, message: str, sql: Optional[str] = None, operation: str = "Unknown"):
        super().__init__(message)
        self.sql = sql
        self.operation = operation


# Migration declaration / target errors

class NoVersionsDeclaredError(ConfigurationError):
    pass


class InvalidVersionError(ValidationError):
    def __init__(self, message: str, version=None):
        super().__init__(message)
        self.version = version


class DuplicateVersionError(ValidationError):
    def __init__(self, message: str, version=None):
        super().__init__(message)
        self.version = version


class UnknownVersionError(ValidationError):
    def __init__(self, message: str, version=None):
        super().__init__(message)
        self.version = version


# Backup / restore errors

class BackupDirectoryError(ConfigurationError):
    """Backup directory is missing from the options or is not a directory"""
    pass


class BackupFileRequiredError(ConfigurationError):
    """No explicit file was given and no backup could be selected"""
    pass


class BackupFileNotFoundError(ConfigurationError):
    pass


class NotAFileError(ConfigurationError):
    pass


class NotABackupFileError(ValidationError):
    """File does not start with the configured backup tag"""
    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class DecompressionError(ExternalProcessError):
    """Backup payload could not be decompressed"""
    def __init__(self, message: str):
        super().__init__(message, command="gunzip")
