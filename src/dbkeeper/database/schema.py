"""
Schema builders used by migration programs

TableMaker and TableUpdater collect column, index and foreign key
definitions and emit DDL through the owning connection's exec(). The DDL
text comes from SQLAlchemy's compiler for the live dialect.
"""

from typing import Any, List, Optional, Sequence, Tuple, Union

from sqlalchemy import (CHAR, JSON, TIMESTAMP, BigInteger, Column, Date, DateTime, Enum,
                        ForeignKeyConstraint, Index, Integer, MetaData, Numeric,
                        PrimaryKeyConstraint, SmallInteger, String, Table, Text, Time, text)
from sqlalchemy.dialects import mysql
from sqlalchemy.schema import AddConstraint, CreateColumn, CreateIndex, CreateTable, DropIndex

Columns = Union[str, Sequence[str]]

REFERENTIAL_ACTIONS = ('restrict', 'cascade', 'set null', 'no action', 'set default')


def _key_name(columns: Columns) -> str:
    if isinstance(columns, str):
        return columns
    return '_'.join(columns)


def _as_list(columns: Columns) -> List[str]:
    if isinstance(columns, str):
        return [columns]
    return list(columns)


def column_type(type_name: str, length: Any = None):
    """
    Map a column type name to a SQLAlchemy type

    Args:
        type_name: int, bigint, tinyint, varchar, char, text, longtext, date,
            time, datetime, timestamp, json, enum or decimal
        length: Type length. "precision,scale" for decimal; a list or a
            comma separated string of values for enum
    """
    if type_name == 'int':
        return Integer()
    if type_name == 'bigint':
        return BigInteger()
    if type_name == 'tinyint':
        return SmallInteger().with_variant(mysql.TINYINT(), 'mysql')
    if type_name == 'varchar':
        return String(int(length or 255))
    if type_name == 'char':
        return CHAR(int(length or 1))
    if type_name == 'text':
        return Text()
    if type_name == 'longtext':
        return Text().with_variant(mysql.LONGTEXT(), 'mysql')
    if type_name == 'date':
        return Date()
    if type_name == 'time':
        return Time()
    if type_name == 'datetime':
        return DateTime()
    if type_name == 'timestamp':
        return TIMESTAMP()
    if type_name == 'json':
        return JSON()
    if type_name == 'enum':
        values = length.split(',') if isinstance(length, str) else list(length or [])
        return Enum(*[v.strip() for v in values])
    if type_name == 'decimal':
        precision, _, scale = str(length or '10,0').partition(',')
        return Numeric(int(precision), int(scale or 0))
    raise ValueError(f"Unsupported column type: {type_name}")


def _server_default(default):
    if default is None:
        return None
    if callable(default):
        # Expressions such as now() are emitted unquoted
        return text(str(default()))
    if isinstance(default, bool):
        return text('1' if default else '0')
    if isinstance(default, (int, float)):
        return text(str(default))
    return str(default)


def _make_column(name: str, type_name: str, length=None, required: bool = False, inc: bool = False,
                 comment: Optional[str] = None, default=None) -> Column:
    return Column(
        name,
        column_type(type_name, length),
        nullable=not required,
        autoincrement=inc,
        comment=comment,
        server_default=_server_default(default),
    )


def _index(table: Table, kind: str, columns: Columns, ngram: bool = False) -> Index:
    kwargs = {}
    if kind == 'unique':
        kwargs['unique'] = True
    elif kind == 'fulltext':
        kwargs['mysql_prefix'] = 'FULLTEXT'
        if ngram:
            kwargs['mysql_with_parser'] = 'ngram'
    return Index(_key_name(columns), *[table.c[c] for c in _as_list(columns)], **kwargs)


def _check_action(action: str) -> str:
    if action not in REFERENTIAL_ACTIONS:
        raise ValueError(f"Unsupported referential action: {action}")
    return action.upper()


class TableMaker:
    """Builder for CREATE TABLE"""

    def __init__(self, name: str, connection, comment: Optional[str] = None):
        self.name = name
        self.connection = connection
        self.comment = comment
        self.columns: List[Column] = []
        self.primaries: List[str] = []
        self.indexes: List[Tuple[str, Columns, bool]] = []
        self.links: List[dict] = []

    def column(self, name: str, type_name: str, **options) -> 'TableMaker':
        """Add a column; options are length, required, inc, comment and default"""
        self.columns.append(_make_column(name, type_name, **options))
        return self

    def primary(self, *columns: str) -> 'TableMaker':
        self.primaries.extend(columns)
        return self

    def index(self, columns: Columns) -> 'TableMaker':
        self.indexes.append(('index', columns, False))
        return self

    def unique(self, columns: Columns) -> 'TableMaker':
        self.indexes.append(('unique', columns, False))
        return self

    def fulltext(self, columns: Columns, ngram: bool = False) -> 'TableMaker':
        self.indexes.append(('fulltext', columns, ngram))
        return self

    def link(self, column_name: str, ref_table: str, ref_column: str,
             update: str = 'restrict', delete: str = 'restrict') -> 'TableMaker':
        """Add a foreign key from column_name to ref_table.ref_column"""
        self.links.append({
            'column': column_name,
            'ref_table': ref_table,
            'ref_column': ref_column,
            'update': _check_action(update),
            'delete': _check_action(delete),
        })
        return self

    def build(self) -> Tuple[Table, List[Index]]:
        """Assemble the table metadata without touching the database"""
        metadata = MetaData()
        constraints = []
        if self.primaries:
            constraints.append(PrimaryKeyConstraint(*self.primaries))
        for link in self.links:
            if link['ref_table'] != self.name:
                Table(link['ref_table'], metadata, Column(link['ref_column']), extend_existing=True)
            constraints.append(ForeignKeyConstraint(
                [link['column']],
                [f"{link['ref_table']}.{link['ref_column']}"],
                name=f"{self.name}_{link['column']}",
                onupdate=link['update'],
                ondelete=link['delete'],
            ))
        table = Table(self.name, metadata, *self.columns, *constraints, comment=self.comment)
        indexes = [_index(table, kind, cols, ngram) for kind, cols, ngram in self.indexes]
        return table, indexes

    def done(self):
        """Create the table and its indexes"""
        table, indexes = self.build()
        self.connection.exec(CreateTable(table))
        for index in indexes:
            self.connection.exec(CreateIndex(index))


class TableUpdater:
    """Builder for ALTER TABLE statements; each call runs immediately"""

    def __init__(self, name: str, connection):
        self.name = name
        self.connection = connection

    def _table(self, *items, metadata: Optional[MetaData] = None) -> Table:
        return Table(self.name, metadata or MetaData(), *items)

    def add_column(self, name: str, type_name: str, **options) -> 'TableUpdater':
        col = _make_column(name, type_name, **options)
        self._table(col)
        definition = CreateColumn(col).compile(dialect=self.connection.engine.dialect)
        self.connection.exec(f"ALTER TABLE {self.connection.quote(self.name)} ADD COLUMN {definition}")
        return self

    def drop_column(self, name: str) -> 'TableUpdater':
        self.connection.exec(
            f"ALTER TABLE {self.connection.quote(self.name)} DROP COLUMN {self.connection.quote(name)}"
        )
        return self

    def add_index(self, columns: Columns, kind: str = 'index', ngram: bool = False) -> 'TableUpdater':
        table = self._table(*[Column(c) for c in _as_list(columns)])
        self.connection.exec(CreateIndex(_index(table, kind, columns, ngram)))
        return self

    def drop_index(self, columns: Columns) -> 'TableUpdater':
        table = self._table(*[Column(c) for c in _as_list(columns)])
        self.connection.exec(DropIndex(_index(table, 'index', columns)))
        return self

    def add_link(self, column_name: str, ref_table: str, ref_column: str,
                 update: str = 'restrict', delete: str = 'restrict') -> 'TableUpdater':
        metadata = MetaData()
        Table(ref_table, metadata, Column(ref_column))
        constraint = ForeignKeyConstraint(
            [column_name],
            [f"{ref_table}.{ref_column}"],
            name=f"{self.name}_{column_name}",
            onupdate=_check_action(update),
            ondelete=_check_action(delete),
        )
        self._table(Column(column_name), constraint, metadata=metadata)
        self.connection.exec(AddConstraint(constraint))
        return self

    def drop_link(self, column_name: str) -> 'TableUpdater':
        name = f"{self.name}_{column_name}"
        self.connection.exec(
            f"ALTER TABLE {self.connection.quote(self.name)} DROP FOREIGN KEY {self.connection.quote(name)}"
        )
        return self
