"""
Migration Runner for Database Schema Changes

Runs declared migration programs in ascending version order up to a target
version and records each completed version in the tracking table.
"""

import logging
import time
from dataclasses import replace
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from ...errors import (ConfigurationError, DuplicateVersionError, InvalidVersionError,
                       NoVersionsDeclaredError, UnknownVersionError)
from ..config import DatabaseConfig
from ..connection import Connection
from .registry import MigrationStep, VersionLike, VersionRegistry, parse_version, round_version
from .version_manager import VersionManager

logger = logging.getLogger(__name__)


class MigrationRunner:
    """
    Executes declared migrations against one database

    Features:
    - Validation of declared versions before touching the database
    - Automatic creation of the database and the version table
    - Strictly sequential execution, one committed record per version
    - No rollback: a failure leaves the versions committed so far in place
    """

    def __init__(self, registry: VersionRegistry, config: Optional[DatabaseConfig] = None,
                 connection_factory: Optional[Callable[[DatabaseConfig], Connection]] = None):
        """
        Initialize migration runner

        Args:
            registry: Declared migration steps
            config: Database configuration, defaults to the environment
            connection_factory: Opens a connection for a config
        """
        self.registry = registry
        self.config = config or DatabaseConfig()
        self.connection_factory = connection_factory or Connection

    def _prepare_steps(self) -> List[MigrationStep]:
        """Round, validate and sort the declared steps"""
        steps = []
        seen = set()
        for step in self.registry.list():
            version = round_version(step.version)
            if version <= 0:
                raise InvalidVersionError(f"Version must be greater than 0, got {version}", version=version)
            if version in seen:
                raise DuplicateVersionError(f"Got same version {version} in versions", version=version)
            seen.add(version)
            steps.append(replace(step, version=version))

        if not steps:
            raise NoVersionsDeclaredError("No version found")

        return sorted(steps, key=lambda s: s.version)

    def _resolve_target(self, steps: List[MigrationStep], target_version: Optional[VersionLike]) -> Decimal:
        if target_version is None or target_version == "":
            return steps[-1].version
        try:
            target = parse_version(target_version)
        except InvalidVersionError as e:
            raise ConfigurationError(f"Invalid target version {target_version!r}") from e
        if not any(step.version == target for step in steps):
            raise UnknownVersionError(f"Unknown version {target}", version=target)
        return target

    def _bootstrap(self, conn: Connection) -> VersionManager:
        """Create the database and the version table when missing, then select the database"""
        database = self.config.database
        if not database:
            raise ConfigurationError("Database name is required")
        if not conn.database_exists(database):
            logger.info(f"Initial database [{database}]")
            conn.create_database(database, self.config.charset)
        conn.use(database)

        version_manager = VersionManager(conn)
        version_manager.ensure_version_table()
        return version_manager

    def upgrade(self, target_version: Optional[VersionLike] = None) -> int:
        """
        Apply pending migrations up to target version

        Args:
            target_version: Stop at this version (None = latest declared)

        Returns:
            Number of migrations applied
        """
        steps = self._prepare_steps()
        target = self._resolve_target(steps, target_version)

        start_time = time.time()
        conn = None
        try:
            conn = self.connection_factory(self.config)
            version_manager = self._bootstrap(conn)
            applied = version_manager.get_applied_versions()

            def dominated(version: Decimal) -> bool:
                return any(v >= version for v in applied)

            from_step = next((step for step in steps if not dominated(step.version)), None)
            if from_step is None:
                logger.warning("Nothing to be updated")
                return 0

            logger.info(f"Upgrading database [{self.config.database}] from {from_step.version} to {target}")
            count = 0
            for step in steps:
                if dominated(step.version):
                    continue
                if step.version > target:
                    continue
                logger.info(f"Applying version {step.version}: {step.name}")
                step.upgrade(conn)
                version_manager.record_migration(step.version)
                count += 1

            total_time_ms = int((time.time() - start_time) * 1000)
            if count:
                logger.info(f"Update database to {target} successfully ({count} versions, {total_time_ms}ms)")
            else:
                logger.warning("Nothing to be updated")
            return count

        except Exception as e:
            logger.error(f"Upgrade failed: {e}")
            sql = getattr(e, 'sql', None)
            if sql:
                logger.error(f"Failed SQL: {sql}")
            raise
        finally:
            if conn is not None:
                conn.close()

    def status(self, target_version: Optional[VersionLike] = None) -> Dict:
        """
        Get migration status without applying anything

        Returns:
            Declared, applied and pending versions plus the current version
        """
        steps = self._prepare_steps()
        target = self._resolve_target(steps, target_version)

        conn = self.connection_factory(self.config)
        try:
            if conn.database_exists(self.config.database):
                conn.use(self.config.database)
                version_manager = VersionManager(conn)
                current = version_manager.get_current_version()
                applied = version_manager.get_applied_versions() if current is not None else []
            else:
                current = None
                applied = []
        finally:
            conn.close()

        pending = [
            str(step.version) for step in steps
            if step.version <= target and not any(v >= step.version for v in applied)
        ]
        return {
            'database': self.config.database,
            'current_version': str(current) if current is not None else None,
            'target_version': str(target),
            'declared_versions': [str(step.version) for step in steps],
            'applied_versions': [str(v) for v in applied],
            'pending_versions': pending,
        }
