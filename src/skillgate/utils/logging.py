"""File logging for the ``skillgate`` command line.

Thresholds are keyed by module: ``skillgate.matcher`` or, relative to the
package, just ``matcher``. A key covers its submodules, so ``definitions``
also sets the level of ``skillgate.definitions.store``. The ``default`` key
applies to every module without a more specific entry.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from loguru import Record

PACKAGE = "skillgate"
DEFAULT_LEVEL_KEY = "default"


def level_number(level_name: str) -> int:
    """Return loguru's severity number for a level name, ignoring case."""
    try:
        return logger.level(level_name.strip().upper()).no
    except ValueError as exc:
        raise ValueError(f"Invalid log level '{level_name}'") from exc


def module_key(module: str) -> str:
    """Canonical override key: a dotted module path inside the package."""
    key = module.strip().strip(".").lower()
    if not key or key == DEFAULT_LEVEL_KEY:
        return DEFAULT_LEVEL_KEY
    if key != PACKAGE and not key.startswith(f"{PACKAGE}."):
        key = f"{PACKAGE}.{key}"
    return key


def parse_level_overrides(values: Iterable[str]) -> dict[str, str]:
    """Parse ``LEVEL`` and ``module=LEVEL`` entries; a later entry wins.

    Raises:
        ValueError: If an entry has no module before ``=``, no level, or an
            unknown level.
    """
    overrides: dict[str, str] = {}
    for raw in values:
        module, sep, level = raw.partition("=")
        if not sep:
            module, level = DEFAULT_LEVEL_KEY, module
        elif not module.strip():
            raise ValueError(f"Missing module name before '=' in '{raw}'")
        if not level.strip():
            raise ValueError(f"Missing log level in '{raw}'")
        level_number(level)
        overrides[module_key(module)] = level.strip().upper()
    return overrides


@dataclass(frozen=True, slots=True)
class LevelTable:
    """Per-module thresholds, usable directly as a loguru ``filter``."""

    default: int
    modules: tuple[tuple[str, int], ...] = ()
    """(module key, threshold) pairs, longest key first."""

    @classmethod
    def from_levels(cls, levels: Mapping[str, str], base_level: str) -> LevelTable:
        thresholds = {module_key(module): level_number(level) for module, level in levels.items()}
        default = thresholds.pop(DEFAULT_LEVEL_KEY, None)
        if default is None:
            default = level_number(base_level)
        ordered = sorted(thresholds.items(), key=lambda item: (-len(item[0]), item[0]))
        return cls(default=default, modules=tuple(ordered))

    def threshold(self, name: str | None) -> int:
        if name:
            for key, level in self.modules:
                if name == key or name.startswith(f"{key}."):
                    return level
        return self.default

    def __call__(self, record: Record) -> bool:
        return record["level"].no >= self.threshold(record["name"])


def configure_file_logging(
    log_file: Path,
    *,
    base_level: str,
    module_levels: Mapping[str, str] | None = None,
    rotation: str = "06:00",
    retention: str = "10 days",
) -> LevelTable:
    """Replace every loguru handler with a rotating file filtered by module.

    The level table is built before any handler is touched, so an invalid
    level leaves the current logging setup in place.
    """
    table = LevelTable.from_levels(module_levels or {}, base_level)
    logger.remove()
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_file,
        level="TRACE",
        rotation=rotation,
        retention=retention,
        filter=table,
    )
    logger.debug(
        "Logging to {file} (default {default}, modules {modules})",
        file=log_file,
        default=table.default,
        modules=dict(table.modules),
    )
    return table
