from .config import DatabaseConfig
from .connection import Connection

__all__ = ['Connection', 'DatabaseConfig']
