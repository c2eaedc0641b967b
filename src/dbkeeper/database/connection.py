"""
Database Connection for dbkeeper

Thin wrapper around a single SQLAlchemy connection. Migration programs
receive an instance of Connection and use exec()/query() plus the
mktbl()/uptbl() schema builders. Every SQLAlchemy failure surfaces as a
DatabaseError tagged with the SQL that caused it.
"""

import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from sqlalchemy import and_, column, inspect, insert, select, table, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.base import Executable

from ..errors import ConfigurationError, DatabaseError
from .config import DatabaseConfig
from .schema import TableMaker, TableUpdater

logger = logging.getLogger(__name__)

Statement = Union[str, Executable]

_CHARSET_PATTERN = re.compile(r'^\w+$')


class Connection:
    """
    A single live database connection

    Opened at construction time and released by close(); also usable as a
    context manager. Statements run in commit-as-you-go mode: exec() commits
    immediately so every applied change is durable on its own.
    """

    def __init__(self, config: DatabaseConfig, engine=None):
        self.config = config
        self.engine = engine or config.create_engine()
        self.dialect = self.engine.dialect.name
        self.dbname: Optional[str] = None
        try:
            self._conn = self.engine.connect()
        except SQLAlchemyError as e:
            self.engine.dispose()
            raise DatabaseError(f"Failed to connect to database: {e}", operation="connect") from e

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def closed(self) -> bool:
        return self._conn.closed

    def close(self):
        """Close the connection and release the engine"""
        if not self._conn.closed:
            self._conn.close()
            self.engine.dispose()

    def _to_sql(self, statement: Statement) -> str:
        if isinstance(statement, str):
            return statement
        try:
            return str(statement.compile(dialect=self.engine.dialect))
        except SQLAlchemyError:
            return str(statement)

    def _execute(self, statement: Statement, params: Dict[str, Any], operation: str):
        clause = text(statement) if isinstance(statement, str) else statement
        try:
            if params:
                return self._conn.execute(clause, params)
            return self._conn.execute(clause)
        except SQLAlchemyError as e:
            sql = self._to_sql(statement)
            logger.debug(f"Statement failed: {sql}")
            raise DatabaseError(str(getattr(e, 'orig', None) or e), sql=sql, operation=operation) from e

    def query(self, sql: Statement, **params) -> List[Dict[str, Any]]:
        """
        Run a statement that returns rows

        Args:
            sql: SQL text with :name placeholders, or a SQLAlchemy selectable
            **params: Values for the placeholders

        Returns:
            Rows as dictionaries keyed by column name
        """
        result = self._execute(sql, params, "query")
        return [dict(row) for row in result.mappings().all()]

    def exec(self, sql: Statement, **params):
        """Run a modifying statement and commit it"""
        result = self._execute(sql, params, "exec")
        self._conn.commit()
        return result

    def quote(self, identifier: str) -> str:
        """Escape an identifier for the live dialect"""
        return self.engine.dialect.identifier_preparer.quote(identifier)

    def databases(self) -> List[str]:
        """Names of the databases in the server catalog"""
        if self.dialect == "mysql":
            return [row["Database"] for row in self.query("SHOW DATABASES")]
        if self.dialect == "sqlite":
            return [row["name"] for row in self.query("PRAGMA database_list")]
        raise DatabaseError(f"Listing databases is not supported for {self.dialect}", operation="databases")

    def database_exists(self, name: str) -> bool:
        return name in self.databases()

    def create_database(self, name: str, charset: Optional[str] = None):
        if self.dialect != "mysql":
            raise DatabaseError(f"Creating databases is not supported for {self.dialect}",
                                operation="create_database")
        charset = charset or self.config.charset
        if not _CHARSET_PATTERN.match(charset):
            raise ConfigurationError(f"Invalid character set: {charset}")
        self.exec(f"CREATE DATABASE {self.quote(name)} DEFAULT CHARACTER SET = {charset}")

    def drop_database(self, name: str):
        if self.dialect != "mysql":
            raise DatabaseError(f"Dropping databases is not supported for {self.dialect}",
                                operation="drop_database")
        self.exec(f"DROP DATABASE {self.quote(name)}")

    def use(self, name: str):
        """
        Select the working database

        On MySQL, statements built from table metadata are also qualified
        with the database name, since the server-level connection has no
        default schema.
        """
        if self.dialect == "mysql":
            self._execute(f"USE {self.quote(name)}", {}, "use")
            self._conn = self._conn.execution_options(schema_translate_map={None: name})
        elif not self.database_exists(name):
            raise DatabaseError(f"Unknown database {name}", operation="use")
        self.dbname = name

    def has_table(self, name: str) -> bool:
        schema = self.dbname if self.dialect == "mysql" else None
        try:
            return inspect(self._conn).has_table(name, schema=schema)
        except SQLAlchemyError as e:
            raise DatabaseError(str(e), operation="has_table") from e

    def create_tables(self, metadata):
        """Create every table of the metadata that does not exist yet"""
        try:
            metadata.create_all(self._conn, checkfirst=True)
            self._conn.commit()
        except SQLAlchemyError as e:
            raise DatabaseError(str(getattr(e, 'orig', None) or e), operation="create_tables") from e

    def mktbl(self, name: str, comment: Optional[str] = None) -> TableMaker:
        """Start building a new table"""
        return TableMaker(name, self, comment)

    def uptbl(self, name: str) -> TableUpdater:
        """Start altering an existing table"""
        if not self.dbname:
            raise DatabaseError("Unknown database name when updating table", operation="uptbl")
        return TableUpdater(name, self)

    def insert(self, table_name: str, values: Dict[str, Any]):
        """
        Insert one row

        Returns:
            The generated primary key, if any
        """
        target = table(table_name, *[column(key) for key in values])
        result = self.exec(insert(target).values(**values))
        return result.lastrowid

    def insert_many(self, table_name: str, rows: Sequence[Dict[str, Any]]) -> list:
        """Insert rows one by one and return their generated keys"""
        ids = []
        for i, row in enumerate(rows):
            ids.append(self.insert(table_name, row))
            logger.debug(f"Inserted {i + 1}/{len(rows)} rows into {table_name}")
        logger.info(f"Inserted {len(ids)} rows into {table_name}")
        return ids

    def update_rows(self, table_name: str, key: Union[str, Sequence[str]], columns: Sequence[str],
                    updater: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]],
                    batch_size: int = 200) -> int:
        """
        Rewrite existing rows in batches

        Args:
            table_name: Table to update
            key: Primary key column(s) identifying each row
            columns: Columns passed to the updater
            updater: Receives the row and returns the new values, or None
                to leave the row unchanged
            batch_size: Rows read per query

        Returns:
            Number of rows visited
        """
        keys = [key] if isinstance(key, str) else list(key)
        target = table(table_name, *[column(name) for name in dict.fromkeys(keys + list(columns))])
        logger.info(f"Updating {table_name} for columns of {','.join(columns)}")

        visited = 0
        while True:
            rows = self.query(select(*target.c).limit(batch_size).offset(visited))
            for row in rows:
                values = updater(row)
                if values is None:
                    continue
                condition = and_(*[target.c[k] == row[k] for k in keys])
                self.exec(update(target).where(condition).values(**values))
            visited += len(rows)
            if len(rows) < batch_size:
                break
        return visited
