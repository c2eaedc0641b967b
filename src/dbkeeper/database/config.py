"""
Database Configuration for dbkeeper

Holds the MySQL connection parameters shared by migrations, backup and
restore. Values not passed explicitly are read from the environment (a .env
file is loaded first). A full SQLAlchemy URL can override the MySQL settings,
which is how tests point the migration runner at SQLite. A URL is used
only when no host, port or credentials are passed; a MySQL URL also supplies
the connection flags of the mysqldump and mysql executables.
"""

import os
from typing import Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url

from ..errors import ConfigurationError

load_dotenv()

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3306
DEFAULT_CHARSET = "utf8mb4"


class DatabaseConfig:
    """Database configuration manager"""

    def __init__(self, database: Optional[str] = None, host: Optional[str] = None,
                 port: Optional[int] = None, username: Optional[str] = None,
                 password: Optional[str] = None, charset: Optional[str] = None,
                 url: Optional[str] = None, dump_bin: Optional[str] = None,
                 restore_bin: Optional[str] = None):
        explicit_server = any(value is not None for value in (host, port, username, password))
        if url and explicit_server:
            raise ConfigurationError("Pass either a database URL or host/port/credentials, not both")
        # DATABASE_URL never overrides server parameters passed by the caller
        self.url = url or (None if explicit_server else os.getenv("DATABASE_URL"))

        parsed = make_url(self.url) if self.url else None
        if parsed is not None and parsed.get_backend_name() == "mysql":
            # Client executables must reach the same server as the engine
            self.database = database or parsed.database or os.getenv("DB_NAME", "")
            self.host = parsed.host or DEFAULT_HOST
            self.port = int(parsed.port or DEFAULT_PORT)
            self.username = parsed.username or ""
            self.password = parsed.password or ""
        else:
            self.database = database or os.getenv("DB_NAME", "")
            self.host = host or os.getenv("DB_HOST", DEFAULT_HOST)
            self.port = int(port or os.getenv("DB_PORT", DEFAULT_PORT))
            self.username = username if username is not None else os.getenv("DB_USER", "")
            self.password = password if password is not None else os.getenv("DB_PASSWORD", "")
        self.charset = charset or os.getenv("DB_CHARSET", DEFAULT_CHARSET)
        self.dump_bin = dump_bin or os.getenv("MYSQLDUMP_BIN", "mysqldump")
        self.restore_bin = restore_bin or os.getenv("MYSQL_BIN", "mysql")

    @property
    def dialect(self) -> str:
        """Dialect name of the configured URL"""
        if self.url:
            return self.url.split(":", 1)[0].split("+", 1)[0]
        return "mysql"

    def get_database_url(self, include_database: bool = False) -> str:
        """
        Build the SQLAlchemy URL

        Args:
            include_database: Append the database name. Migrations and
                restore connect at server level because the database may
                not exist yet.
        """
        if self.url:
            return self.url

        credentials = ""
        if self.username:
            credentials = quote_plus(self.username)
            # URL encode password to handle special characters
            if self.password:
                credentials += f":{quote_plus(self.password)}"
            credentials += "@"

        path = f"/{self.database}" if include_database and self.database else "/"
        return f"mysql+pymysql://{credentials}{self.host}:{self.port}{path}?charset={self.charset}"

    def create_engine(self, include_database: bool = False, **kwargs):
        """Create SQLAlchemy engine with appropriate configuration"""
        engine_config = {}
        engine_config["echo"] = os.getenv("DB_ECHO", "false").lower() == "true"

        if self.dialect == "mysql":
            engine_config["pool_pre_ping"] = True
            engine_config["pool_recycle"] = int(os.getenv("DB_POOL_RECYCLE", "3600"))

        # Override with any provided kwargs
        engine_config.update(kwargs)

        return create_engine(self.get_database_url(include_database), **engine_config)

    def client_arguments(self) -> list:
        """
        Connection flags shared by the mysqldump and mysql executables

        User and password flags are omitted when empty.
        """
        args = []
        if self.username:
            args.append(f"-u{self.username}")
        if self.password:
            args.append(f"--password={self.password}")
        args.append(f"-h{self.host or DEFAULT_HOST}")
        args.append(f"-P{self.port or DEFAULT_PORT}")
        args.append(self.database)
        return args

    def get_connection_info(self):
        """Get connection information for debugging"""
        url = self.get_database_url(include_database=True)
        return {
            "database": self.database,
            "dialect": self.dialect,
            "database_url": url.replace(
                url.split("@")[0].split("://")[-1] + "@", "***:***@"
            )
            if "@" in url
            else url,
        }
