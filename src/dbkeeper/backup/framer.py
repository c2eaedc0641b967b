"""
Backup file framing and selection

A backup file is the tag bytes followed by the compressed (and optionally
ciphered) dump. The tag doubles as a cheap validity check before restore.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import BinaryIO, Optional, Union

# C A N D Y D B B A K END
BACKUP_FILE_TAG = bytes([0x43, 0x41, 0x4E, 0x44, 0x59, 0x44, 0x42, 0x42, 0x41, 0x4B, 0x89])

BACKUP_FILENAME_FORMAT = "%Y%m%d-%H%M%S"
BACKUP_FILE_EXTENSION = ".bak"

TagLike = Optional[Union[str, bytes]]


@dataclass(frozen=True)
class FilenameContext:
    """
    Passed to a caller supplied filename generator

    Generated names must sort in chronological order, restore picks the
    greatest name as the latest backup.
    """
    dbname: str
    version: Optional[Decimal]


def normalize_tag(tag: TagLike = None) -> bytes:
    """Tag as bytes; str tags are UTF-8 encoded, empty means the default tag"""
    if not tag:
        return BACKUP_FILE_TAG
    if isinstance(tag, str):
        return tag.encode('utf-8')
    return bytes(tag)


def default_filename(now: Optional[datetime] = None) -> str:
    """Timestamp based name, e.g. 20240131-235959.bak"""
    return (now or datetime.now()).strftime(BACKUP_FILENAME_FORMAT) + BACKUP_FILE_EXTENSION


def write_tag(stream: BinaryIO, tag: TagLike = None) -> int:
    """Write the tag at the current position; the payload follows it"""
    data = normalize_tag(tag)
    stream.write(data)
    return len(data)


def verify(path: Union[str, Path], tag: TagLike = None) -> bool:
    """Check that the file starts with the tag"""
    expected = normalize_tag(tag)
    with open(path, 'rb') as f:
        head = f.read(len(expected))
    return head == expected


def select_latest(directory: Union[str, Path]) -> Optional[Path]:
    """
    Pick the latest backup in a directory

    Returns:
        The file with the greatest name, or None for a missing or empty directory
    """
    path = Path(directory)
    if not path.is_dir():
        return None
    names = sorted((entry.name for entry in path.iterdir() if entry.is_file()), reverse=True)
    if not names:
        return None
    return path / names[0]
