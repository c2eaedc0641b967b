"""
Logging configuration for dbkeeper

Library modules only create module loggers; applications embedding dbkeeper
call LoggingManager.setup_logging() once to get console (and optionally file)
output in a consistent format.
"""

import logging
import sys
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Loggers whose level follows the configured level
COMPONENT_LOGGERS = [
    'dbkeeper.database.connection',
    'dbkeeper.database.migrations.migration_runner',
    'dbkeeper.database.migrations.version_manager',
    'dbkeeper.backup.pipeline',
]


class LoggingManager:
    """
    Centralized logging configuration
    """

    @staticmethod
    def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
        """
        Setup logging configuration

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_file: Optional log file path

        Returns:
            The configured root logger
        """
        level = getattr(logging, log_level.upper())
        formatter = logging.Formatter(LOG_FORMAT)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        for logger_name in COMPONENT_LOGGERS:
            logging.getLogger(logger_name).setLevel(level)

        return root_logger
