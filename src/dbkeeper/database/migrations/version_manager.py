"""
Version Manager for Database Migrations

Tracks applied migration versions in the ``_ver`` table of the target
database. Records are only ever added; nothing here updates or deletes them.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import DateTime, Numeric, func, insert, select
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

from .registry import round_version

logger = logging.getLogger(__name__)

VERSION_TABLE = '_ver'

# Separate base so the tracking table is the only table created from metadata
MigrationBase = declarative_base()


class VersionRecord(MigrationBase):
    """One row per successfully applied version"""
    __tablename__ = VERSION_TABLE

    ver: Mapped[Decimal] = mapped_column(Numeric(20, 2), primary_key=True, autoincrement=False)
    ctime: Mapped[Optional[datetime]] = mapped_column(DateTime, index=True)


class VersionManager:
    """
    Reads and writes the version tracking table

    Works on the live connection of the current operation, so records are
    written in the same session as the migration programs.
    """

    def __init__(self, connection):
        """
        Args:
            connection: Open dbkeeper Connection with the target database selected
        """
        self.connection = connection

    def ensure_version_table(self):
        """Create the version tracking table if it doesn't exist"""
        self.connection.create_tables(MigrationBase.metadata)
        logger.info("Version table ensured")

    def get_applied_versions(self) -> List[Decimal]:
        """
        Get all applied versions

        Returns:
            Versions in ascending order
        """
        rows = self.connection.query(select(VersionRecord.ver).order_by(VersionRecord.ver.asc()))
        return [round_version(row['ver']) for row in rows]

    def get_current_version(self) -> Optional[Decimal]:
        """
        Get the highest applied version

        Returns:
            Version or None if the table is missing or empty
        """
        if not self.connection.has_table(VERSION_TABLE):
            return None
        rows = self.connection.query(select(func.max(VersionRecord.ver).label('ver')))
        if not rows or rows[0]['ver'] is None:
            return None
        return round_version(rows[0]['ver'])

    def record_migration(self, version: Decimal, applied_at: Optional[datetime] = None):
        """
        Record a successfully applied version

        Args:
            version: Rounded version number
            applied_at: Timestamp, defaults to now
        """
        self.connection.exec(
            insert(VersionRecord).values(ver=version, ctime=applied_at or datetime.now())
        )
        logger.info(f"Recorded version {version}")
