#!/usr/bin/env python3
"""
dbkeeper Migration Testing

Test suite for the versioned migration system:
- Version registry declaration and directory loading
- Version validation before any database access
- Upgrade ordering, targets and idempotence
- Failure behaviour and connection cleanup
"""

import os
import sys
import logging
import tempfile
import textwrap
import unittest
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock

# Setup test environment
sys.path.insert(0, str(Path(__file__).parent / "src"))

from sqlalchemy import create_engine, inspect

from dbkeeper.database.config import DatabaseConfig
from dbkeeper.database.connection import Connection
from dbkeeper.database.migrations import MigrationRunner, VersionManager, VersionRegistry
from dbkeeper.database.migrations.registry import round_version
from dbkeeper.errors import (ConfigurationError, DatabaseError, DuplicateVersionError,
                             InvalidVersionError, NoVersionsDeclaredError, UnknownVersionError)

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_table_t(conn):
    conn.mktbl("t").column("id", "int", inc=True).primary("id").done()


def add_column_x(conn):
    conn.uptbl("t").add_column("x", "varchar", length=32)


class MigrationTestBase(unittest.TestCase):
    """Base class for migration tests with an isolated SQLite database"""

    def setUp(self):
        fd, self.test_db_path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        self.config = DatabaseConfig(database="main", url=f"sqlite:///{self.test_db_path}")
        self.connections = []

    def tearDown(self):
        for conn in self.connections:
            conn.close()
        if os.path.exists(self.test_db_path):
            os.unlink(self.test_db_path)

    def connection_factory(self, config):
        conn = Connection(config)
        self.connections.append(conn)
        return conn

    def runner(self, registry):
        return MigrationRunner(registry, self.config, connection_factory=self.connection_factory)

    def applied_versions(self):
        with Connection(self.config) as conn:
            conn.use("main")
            return VersionManager(conn).get_applied_versions()

    def version_rows(self):
        with Connection(self.config) as conn:
            return conn.query("SELECT ver, ctime FROM _ver ORDER BY ver")

    def column_names(self, table):
        engine = create_engine(self.config.url)
        try:
            return [c["name"] for c in inspect(engine).get_columns(table)]
        finally:
            engine.dispose()


class TestVersionRegistry(unittest.TestCase):
    """Test declaration of migration steps"""

    def test_declare_and_list(self):
        """Test steps are listed with their programs and names"""
        registry = VersionRegistry()
        registry.declare(2, add_column_x)
        registry.declare("1.00", create_table_t, name="initial")

        steps = registry.list()

        self.assertEqual(len(registry), 2)
        self.assertEqual([s.name for s in steps], ["add_column_x", "initial"])
        self.assertIs(steps[0].upgrade, add_column_x)

    def test_version_decorator(self):
        """Test decorator declaration keeps the function usable"""
        registry = VersionRegistry()

        @registry.version(1.5)
        def seed(conn):
            return "seeded"

        self.assertEqual(seed(None), "seeded")
        self.assertEqual(registry.list()[0].version, 1.5)

    def test_declare_requires_callable(self):
        """Test non-callable programs are rejected"""
        registry = VersionRegistry()
        with self.assertRaises(TypeError):
            registry.declare(1, "CREATE TABLE t (id int)")

    def test_round_version(self):
        """Test versions are rounded half up to two decimals"""
        self.assertEqual(round_version(3.021), Decimal("3.02"))
        self.assertEqual(round_version("1.005"), Decimal("1.01"))
        self.assertEqual(round_version(2), Decimal("2.00"))
        with self.assertRaises(InvalidVersionError):
            round_version("abc")

    def test_load_directory(self):
        """Test version modules are imported and registered"""
        with tempfile.TemporaryDirectory() as versions_dir:
            Path(versions_dir, "v001.py").write_text(textwrap.dedent("""
                def register(registry):
                    @registry.version(1.00)
                    def create_users(conn):
                        conn.exec("CREATE TABLE users (id INTEGER PRIMARY KEY)")
            """))
            Path(versions_dir, "v002.py").write_text(textwrap.dedent("""
                def register(registry):
                    registry.declare(2.00, lambda conn: None, name="noop")
                    registry.declare(2.01, lambda conn: None, name="noop2")
            """))
            Path(versions_dir, "_shared.py").write_text("raise RuntimeError('must not be imported')\n")

            registry = VersionRegistry()
            loaded = registry.load_directory(versions_dir)

        self.assertEqual(loaded, 2)
        self.assertEqual(sorted(s.name for s in registry.list()), ["create_users", "noop", "noop2"])

    def test_load_directory_requires_register(self):
        """Test modules without register() are a configuration error"""
        with tempfile.TemporaryDirectory() as versions_dir:
            Path(versions_dir, "v001.py").write_text("VERSION = 1\n")
            with self.assertRaises(ConfigurationError):
                VersionRegistry().load_directory(versions_dir)

    def test_load_missing_directory(self):
        """Test a missing directory is a configuration error"""
        with self.assertRaises(ConfigurationError):
            VersionRegistry().load_directory("/nonexistent/versions")


class TestVersionValidation(unittest.TestCase):
    """Test validation happens before the database is touched"""

    def setUp(self):
        self.factory = MagicMock()
        self.config = DatabaseConfig(database="main", url="sqlite://")

    def test_duplicate_after_rounding(self):
        """Test two versions rounding to the same value are rejected"""
        registry = VersionRegistry()
        registry.declare(1.001, MagicMock())
        registry.declare(1.004, MagicMock())

        with self.assertRaises(DuplicateVersionError) as ctx:
            MigrationRunner(registry, self.config, connection_factory=self.factory).upgrade()

        self.assertEqual(ctx.exception.version, Decimal("1.00"))
        self.factory.assert_not_called()

    def test_invalid_version(self):
        """Test versions rounding to zero or below are rejected"""
        for bad in (0, -1, 0.004):
            registry = VersionRegistry()
            registry.declare(bad, MagicMock())
            with self.assertRaises(InvalidVersionError):
                MigrationRunner(registry, self.config, connection_factory=self.factory).upgrade()
        self.factory.assert_not_called()

    def test_no_versions(self):
        """Test an empty registry is rejected"""
        with self.assertRaises(NoVersionsDeclaredError):
            MigrationRunner(VersionRegistry(), self.config, connection_factory=self.factory).upgrade()
        self.factory.assert_not_called()

    def test_unknown_target(self):
        """Test a target that is not declared runs nothing"""
        first, second = MagicMock(), MagicMock()
        registry = VersionRegistry()
        registry.declare(1, first)
        registry.declare(2, second)
        runner = MigrationRunner(registry, self.config, connection_factory=self.factory)

        for target in ("1.5", 3, "2.001"):
            with self.assertRaises(UnknownVersionError):
                runner.upgrade(target)

        first.assert_not_called()
        second.assert_not_called()
        self.factory.assert_not_called()

    def test_unparseable_target(self):
        """Test a malformed target is a configuration error"""
        registry = VersionRegistry()
        registry.declare(1, MagicMock())
        with self.assertRaises(ConfigurationError):
            MigrationRunner(registry, self.config, connection_factory=self.factory).upgrade("latest")


class TestMigrationUpgrade(MigrationTestBase):
    """Test upgrade execution against SQLite"""

    def test_upgrade_empty_database(self):
        """Test all versions are applied and recorded"""
        registry = VersionRegistry()
        registry.declare(2.00, add_column_x)
        registry.declare(1.00, create_table_t)

        count = self.runner(registry).upgrade()

        self.assertEqual(count, 2)
        self.assertEqual(self.applied_versions(), [Decimal("1.00"), Decimal("2.00")])
        self.assertIn("x", self.column_names("t"))

    def test_upgrade_is_idempotent(self):
        """Test a second upgrade to the same target changes nothing"""
        registry = VersionRegistry()
        registry.declare(1.00, create_table_t)
        registry.declare(2.00, add_column_x)
        runner = self.runner(registry)

        self.assertEqual(runner.upgrade(), 2)
        rows_before = self.version_rows()

        self.assertEqual(runner.upgrade(), 0)
        self.assertEqual(runner.upgrade("2.00"), 0)
        self.assertEqual(self.version_rows(), rows_before)

    def test_upgrade_to_target_then_latest(self):
        """Test a target stops the run and a later run continues from it"""
        first = MagicMock(side_effect=create_table_t)
        second = MagicMock(side_effect=add_column_x)
        registry = VersionRegistry()
        registry.declare(1.00, first)
        registry.declare(2.00, second)
        runner = self.runner(registry)

        self.assertEqual(runner.upgrade("1.00"), 1)
        self.assertEqual(self.applied_versions(), [Decimal("1.00")])
        second.assert_not_called()

        self.assertEqual(runner.upgrade(), 1)
        self.assertEqual(first.call_count, 1)
        self.assertEqual(second.call_count, 1)
        self.assertEqual(self.applied_versions(), [Decimal("1.00"), Decimal("2.00")])

    def test_programs_run_in_version_order(self):
        """Test steps run in ascending version order regardless of declaration order"""
        calls = []
        registry = VersionRegistry()
        for version in ("3.00", "1.10", "1.02", "2.5"):
            registry.declare(version, lambda conn, v=version: calls.append(v))

        self.assertEqual(self.runner(registry).upgrade(), 4)
        self.assertEqual(calls, ["1.02", "1.10", "2.5", "3.00"])

    def test_program_receives_live_connection(self):
        """Test programs can execute SQL through the connection they receive"""
        def create_and_seed(conn):
            conn.exec("CREATE TABLE items (id INTEGER PRIMARY KEY, name VARCHAR(20))")
            conn.exec("INSERT INTO items (name) VALUES (:name)", name="first")

        registry = VersionRegistry()
        registry.declare(1, create_and_seed)
        self.runner(registry).upgrade()

        with Connection(self.config) as conn:
            rows = conn.query("SELECT name FROM items")
        self.assertEqual(rows, [{"name": "first"}])

    def test_failure_keeps_committed_versions(self):
        """Test a failing step stops the run, keeps earlier records and closes the connection"""
        third = MagicMock()
        registry = VersionRegistry()
        registry.declare(1.00, create_table_t)
        registry.declare(2.00, lambda conn: conn.exec("ALTER TABLE missing ADD COLUMN y INTEGER"))
        registry.declare(3.00, third)

        with self.assertRaises(DatabaseError) as ctx:
            self.runner(registry).upgrade()

        self.assertIn("ALTER TABLE missing", ctx.exception.sql)
        self.assertEqual(self.applied_versions(), [Decimal("1.00")])
        third.assert_not_called()
        self.assertTrue(all(conn.closed for conn in self.connections))

    def test_program_exception_propagates_unchanged(self):
        """Test errors raised by a program reach the caller as they are"""
        registry = VersionRegistry()
        registry.declare(1, MagicMock(side_effect=RuntimeError("boom")))

        with self.assertRaises(RuntimeError):
            self.runner(registry).upgrade()
        self.assertEqual(self.applied_versions(), [])

    def test_gap_in_applied_versions_is_skipped(self):
        """Test versions below the highest applied version are never re-applied"""
        with Connection(self.config) as conn:
            conn.use("main")
            manager = VersionManager(conn)
            manager.ensure_version_table()
            manager.record_migration(Decimal("1.00"))
            manager.record_migration(Decimal("3.00"))

        second = MagicMock()
        registry = VersionRegistry()
        registry.declare(1, MagicMock())
        registry.declare(2, second)
        registry.declare(3, MagicMock())

        self.assertEqual(self.runner(registry).upgrade(), 0)
        second.assert_not_called()

    def test_status(self):
        """Test status reports applied and pending versions"""
        registry = VersionRegistry()
        registry.declare(1.00, create_table_t)
        registry.declare(2.00, add_column_x)
        runner = self.runner(registry)

        before = runner.status()
        self.assertIsNone(before["current_version"])
        self.assertEqual(before["pending_versions"], ["1.00", "2.00"])

        runner.upgrade("1.00")
        status = runner.status()

        self.assertEqual(status["current_version"], "1.00")
        self.assertEqual(status["applied_versions"], ["1.00"])
        self.assertEqual(status["pending_versions"], ["2.00"])
        self.assertEqual(status["target_version"], "2.00")


class TestVersionManager(MigrationTestBase):
    """Test the version tracking table"""

    def test_version_table_created_once(self):
        """Test the tracking table and its index are created idempotently"""
        with Connection(self.config) as conn:
            conn.use("main")
            manager = VersionManager(conn)
            manager.ensure_version_table()
            manager.ensure_version_table()
            self.assertTrue(conn.has_table("_ver"))
            self.assertIsNone(manager.get_current_version())

        engine = create_engine(self.config.url)
        try:
            indexes = inspect(engine).get_indexes("_ver")
        finally:
            engine.dispose()
        self.assertEqual([i["column_names"] for i in indexes], [["ctime"]])

    def test_current_version_without_table(self):
        """Test a database without tracking table has no current version"""
        with Connection(self.config) as conn:
            conn.use("main")
            self.assertIsNone(VersionManager(conn).get_current_version())

    def test_record_migration(self):
        """Test records keep version and timestamp"""
        applied_at = datetime(2024, 1, 31, 23, 59, 59)
        with Connection(self.config) as conn:
            conn.use("main")
            manager = VersionManager(conn)
            manager.ensure_version_table()
            manager.record_migration(Decimal("1.50"), applied_at)
            manager.record_migration(Decimal("1.20"))

            self.assertEqual(manager.get_applied_versions(), [Decimal("1.20"), Decimal("1.50")])
            self.assertEqual(manager.get_current_version(), Decimal("1.50"))


if __name__ == "__main__":
    unittest.main()
