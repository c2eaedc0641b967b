"""
Registry of declared migration steps

A VersionRegistry is built once, before an upgrade runs, either by calling
declare()/version() directly or by loading a directory of version modules.
Each version module defines ``register(registry)``:

    def register(registry):
        @registry.version(1.00)
        def create_users(conn):
            conn.mktbl('users').column('id', 'int', inc=True).primary('id').done()
"""

import importlib.util
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, List, Optional, Union

from ...errors import ConfigurationError, InvalidVersionError

logger = logging.getLogger(__name__)

VersionLike = Union[str, int, float, Decimal]

VERSION_QUANTUM = Decimal("0.01")


def parse_version(value: VersionLike) -> Decimal:
    """Convert a version number to Decimal without rounding"""
    if isinstance(value, bool):
        raise InvalidVersionError(f"Invalid version {value!r}", version=value)
    try:
        version = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidVersionError(f"Invalid version {value!r}", version=value) from e
    if not version.is_finite():
        raise InvalidVersionError(f"Invalid version {value!r}", version=value)
    return version


def round_version(value: VersionLike) -> Decimal:
    """Round a version number to two decimal places, e.g. 3.021 -> 3.02"""
    return parse_version(value).quantize(VERSION_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class MigrationStep:
    """A declared version and the program that upgrades the schema to it"""
    version: VersionLike
    upgrade: Callable
    name: str = ""


class VersionRegistry:
    """Append-only list of declared migration steps"""

    def __init__(self):
        self._steps: List[MigrationStep] = []

    def __len__(self):
        return len(self._steps)

    def declare(self, version: VersionLike, program: Callable, name: Optional[str] = None) -> MigrationStep:
        """
        Declare a migration step

        Args:
            version: Version number with up to two decimals, e.g. 3.02
            program: Callable receiving the live connection
            name: Human readable name, defaults to the program's name
        """
        if not callable(program):
            raise TypeError(f"Upgrade program for version {version} is not callable")
        step = MigrationStep(
            version=version,
            upgrade=program,
            name=name or getattr(program, '__name__', ''),
        )
        self._steps.append(step)
        return step

    def version(self, version: VersionLike, name: Optional[str] = None):
        """Decorator form of declare()"""
        def decorator(program: Callable) -> Callable:
            self.declare(version, program, name)
            return program
        return decorator

    def list(self) -> List[MigrationStep]:
        return list(self._steps)

    def load_directory(self, versions_dir: Union[str, Path]) -> int:
        """
        Import every version module of a directory

        Files are loaded in name order; files starting with an underscore
        are ignored.

        Returns:
            Number of modules loaded
        """
        path = Path(versions_dir)
        if not path.is_dir():
            raise ConfigurationError(f"Versions directory {path} does not exist")

        loaded = 0
        for file in sorted(path.glob("*.py")):
            if file.name.startswith("_"):
                continue
            spec = importlib.util.spec_from_file_location(f"dbkeeper_versions.{file.stem}", str(file))
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)

            register = getattr(module, "register", None)
            if not callable(register):
                raise ConfigurationError(f"Version module {file.name} has no register(registry) function")
            register(self)
            loaded += 1
            logger.debug(f"Loaded version module {file.name}")

        logger.info(f"Loaded {loaded} version modules from {path}, {len(self)} versions declared")
        return loaded
