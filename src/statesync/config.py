"""Configuration shared by the state store, consistency monitor and CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Mapping

ENV_PREFIX = "STATESYNC_"


@dataclass(frozen=True, slots=True)
class SyncConfig:
    """Explicit limits and recovery policies for state synchronization.

    Attributes
    ----------
    max_delta_operations:
        Largest number of operations accepted in a single delta. Longer
        deltas are rejected as malformed before anything is applied. ``None``
        disables the limit.
    resync_timeout:
        Seconds after which an unanswered resync request expires. While a
        request is outstanding further failures are coalesced into it; once it
        expires the next failure emits a fresh request.
    failure_history:
        Number of failure contexts each run keeps for diagnostics.
    """

    max_delta_operations: int | None = 10_000
    resync_timeout: float = 30.0
    failure_history: int = 32

    def __post_init__(self) -> None:
        if self.max_delta_operations is not None and self.max_delta_operations < 1:
            raise ValueError("max_delta_operations must be positive or None")
        if self.resync_timeout <= 0:
            raise ValueError("resync_timeout must be positive")
        if self.failure_history < 0:
            raise ValueError("failure_history must not be negative")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "SyncConfig":
        """Build a :class:`SyncConfig` from loosely typed values.

        Unknown keys raise :class:`ValueError`. Strings are converted, so the
        mapping may come straight from a parsed config file or the environment.
        The string ``"none"`` (any case) disables ``max_delta_operations``.
        """

        known = {field.name for field in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"unknown configuration keys: {', '.join(unknown)}")

        kwargs: dict[str, Any] = {}
        if "max_delta_operations" in values:
            kwargs["max_delta_operations"] = _optional_int(
                "max_delta_operations", values["max_delta_operations"]
            )
        if "resync_timeout" in values:
            kwargs["resync_timeout"] = _as_float("resync_timeout", values["resync_timeout"])
        if "failure_history" in values:
            kwargs["failure_history"] = _as_int("failure_history", values["failure_history"])
        return cls(**kwargs)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "SyncConfig":
        """Read ``STATESYNC_*`` variables, falling back to defaults."""

        source = os.environ if environ is None else environ
        values = {
            field.name: source[ENV_PREFIX + field.name.upper()]
            for field in fields(cls)
            if ENV_PREFIX + field.name.upper() in source
        }
        return cls.from_mapping(values)

    def as_dict(self) -> dict[str, Any]:
        return {field.name: getattr(self, field.name) for field in fields(self)}


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _optional_int(name: str, value: Any) -> int | None:
    if value is None or (isinstance(value, str) and value.strip().lower() == "none"):
        return None
    return _as_int(name, value)


def _as_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


__all__ = ["ENV_PREFIX", "SyncConfig"]
