"""Per-run owner of the authoritative state document mirror."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any

from statesync.config import SyncConfig
from statesync.core.errors import PatchError, UnknownRun
from statesync.core.patch import apply_patch
from statesync.io.schema import PatchOperation


LOGGER = logging.getLogger(__name__)

# distinguishes "no initial document" from an explicit JSON null
UNSET: Any = object()


@dataclass(frozen=True, slots=True)
class DeltaFailure:
    """A rejected delta together with the document it was applied against."""

    error: PatchError
    operations: tuple[Any, ...]
    document: Any

    @property
    def reason(self) -> str:
        return self.error.reason.value

    @property
    def index(self) -> int:
        return self.error.index


@dataclass(frozen=True, slots=True)
class DeltaResult:
    """Outcome of :meth:`StateStore.apply_delta`."""

    ok: bool
    document: Any = None
    failure: DeltaFailure | None = field(default=None)


class StateStore:
    """Hold the single current state document of one run.

    The live document never leaves the store: every accessor returns a deep
    copy and mutations swap in a fully patched replacement, so observers see
    either the pre-delta or the post-delta value and nothing in between.
    """

    def __init__(
        self,
        run_id: str,
        initial_document: Any = UNSET,
        *,
        config: SyncConfig | None = None,
    ) -> None:
        self.run_id = run_id
        self._config = config or SyncConfig()
        self._document: Any = {} if initial_document is UNSET else deepcopy(initial_document)
        self._version = 0
        self._closed = False
        self._lock = threading.Lock()

    @property
    def document(self) -> Any:
        """Return a detached copy of the current document."""

        return self.get()

    @property
    def version(self) -> int:
        """Number of successful mutations applied since the store was created."""

        return self._version

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self) -> Any:
        with self._lock:
            self._ensure_open()
            return deepcopy(self._document)

    def initialize(self, document: Any) -> Any:
        """Establish a new baseline; equivalent to :meth:`snapshot`."""

        return self.snapshot(document)

    def snapshot(self, document: Any) -> Any:
        """Replace the current document wholesale and return a copy of it."""

        replacement = deepcopy(document)
        with self._lock:
            self._ensure_open()
            self._document = replacement
            self._version += 1
            LOGGER.debug("snapshot run=%s version=%s", self.run_id, self._version)
            return deepcopy(replacement)

    def apply_delta(
        self, operations: Sequence[PatchOperation | Mapping[str, Any]]
    ) -> DeltaResult:
        """Apply ``operations`` atomically.

        On success the current document is swapped for the patched one. On
        failure it is left untouched and the returned :class:`DeltaFailure`
        carries a copy of it for diagnostics.
        """

        operations = tuple(operations)
        with self._lock:
            self._ensure_open()
            try:
                patched = apply_patch(
                    self._document,
                    operations,
                    max_operations=self._config.max_delta_operations,
                )
            except PatchError as exc:
                LOGGER.debug(
                    "delta rejected run=%s reason=%s index=%s",
                    self.run_id,
                    exc.reason.value,
                    exc.index,
                )
                failure = DeltaFailure(
                    error=exc,
                    operations=operations,
                    document=deepcopy(self._document),
                )
                return DeltaResult(ok=False, failure=failure)

            self._document = patched
            self._version += 1
            LOGGER.debug(
                "delta applied run=%s operations=%s version=%s",
                self.run_id,
                len(operations),
                self._version,
            )
            return DeltaResult(ok=True, document=deepcopy(patched))

    def close(self) -> None:
        """Drop the document; later calls raise :class:`UnknownRun`."""

        with self._lock:
            self._closed = True
            self._document = None

    def _ensure_open(self) -> None:
        if self._closed:
            raise UnknownRun(self.run_id)


__all__ = ["DeltaFailure", "DeltaResult", "StateStore"]
