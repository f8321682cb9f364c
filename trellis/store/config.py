"""Runtime settings for trellis.store connections.

Settings resolve with the precedence env > explicit arguments > defaults, so a
deployment can repoint a store without touching application code.

Environment variables:
    TRELLIS_URL                 Connection URL (e.g. "sqlite:///app.db")
    TRELLIS_JOURNAL_MODE        SQLite journal mode (default "WAL")
    TRELLIS_FOREIGN_KEYS        Enable foreign-key enforcement (default on)
    TRELLIS_DEFER_FOREIGN_KEYS  Check foreign keys at commit (default on)
"""

import os
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

DEFAULT_URL = "sqlite:///trellis.sqlite"

_TRUE_STRINGS = {"1", "true", "t", "yes", "y", "on"}
_JOURNAL_MODES = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}


def _bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    return str(value).strip().lower() in _TRUE_STRINGS


@dataclass(frozen=True)
class StoreSettings:
    """Connection settings for a Store.

    Attributes:
        url: Connection URL understood by trellis.store.connect()
        journal_mode: SQLite journal mode applied at connect time
        foreign_keys: Whether SQLite enforces foreign keys
        defer_foreign_keys: Defer foreign-key checks to the end of the
            outermost savepoint, so rows that reference each other can be
            written in one save
        savepoint_prefix: Prefix for auto-generated savepoint names
    """

    url: str = DEFAULT_URL
    journal_mode: str = "WAL"
    foreign_keys: bool = True
    defer_foreign_keys: bool = True
    savepoint_prefix: str = "trellis"

    def __post_init__(self) -> None:
        if self.journal_mode.upper() not in _JOURNAL_MODES:
            raise ValueError(f"Unknown journal mode: {self.journal_mode}")
        if not self.savepoint_prefix.replace("_", "").isalnum():
            raise ValueError(
                f"Invalid savepoint prefix {self.savepoint_prefix!r}: "
                f"must be alphanumeric/underscores only"
            )

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> "StoreSettings":
        """Build settings from keyword overrides, then the environment.

        Args:
            environ: Mapping to read instead of os.environ (for tests)
            **overrides: Explicit field values

        Returns:
            New StoreSettings instance
        """
        env = os.environ if environ is None else environ
        settings = replace(cls(), **overrides)

        if env.get("TRELLIS_URL"):
            settings = replace(settings, url=env["TRELLIS_URL"])
        if env.get("TRELLIS_JOURNAL_MODE"):
            settings = replace(settings, journal_mode=env["TRELLIS_JOURNAL_MODE"].upper())
        if "TRELLIS_FOREIGN_KEYS" in env:
            settings = replace(settings, foreign_keys=_bool(env["TRELLIS_FOREIGN_KEYS"]))
        if "TRELLIS_DEFER_FOREIGN_KEYS" in env:
            settings = replace(
                settings, defer_foreign_keys=_bool(env["TRELLIS_DEFER_FOREIGN_KEYS"])
            )
        return settings
