"""
Database Migration System for dbkeeper

Migration programs are plain Python callables declared with a version
number in a VersionRegistry. MigrationRunner applies the pending ones in
ascending order and records each version in the ``_ver`` table.

Key Features:
- Two-decimal version numbers (e.g. 3.02)
- Idempotent upgrades up to an optional target version
- Automatic creation of the database and the tracking table
"""

from .migration_runner import MigrationRunner
from .registry import MigrationStep, VersionRegistry
from .version_manager import VersionManager

__all__ = ['MigrationRunner', 'MigrationStep', 'VersionManager', 'VersionRegistry']
