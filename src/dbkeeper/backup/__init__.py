"""
Streaming database backup and restore

Backup files are framed as [tag][gzip(cipher(dump))].
"""

from .framer import BACKUP_FILE_TAG, FilenameContext, default_filename, select_latest, verify
from .pipeline import BackupOptions, RestoreOptions, backup, restore
from .streams import GzipCompressor, GzipDecompressor, XorCipher, pump

__all__ = [
    'BACKUP_FILE_TAG',
    'BackupOptions',
    'FilenameContext',
    'GzipCompressor',
    'GzipDecompressor',
    'RestoreOptions',
    'XorCipher',
    'backup',
    'default_filename',
    'pump',
    'restore',
    'select_latest',
    'verify',
]
