"""
dbkeeper - MySQL schema migrations and streaming backups

Applies versioned upgrade programs to a database and produces/consumes
compressed, optionally obfuscated logical backups through the mysqldump and
mysql client executables.
"""

from .backup import BackupOptions, RestoreOptions, backup, restore
from .database import Connection, DatabaseConfig
from .database.migrations import MigrationRunner, VersionRegistry

__version__ = "1.0.0"

__all__ = [
    'BackupOptions',
    'Connection',
    'DatabaseConfig',
    'MigrationRunner',
    'RestoreOptions',
    'VersionRegistry',
    'backup',
    'restore',
]
