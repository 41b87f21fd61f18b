"""Abstract checkpoint store interface.

Any team-specific storage backend (SQLite, Gist, Postgres, S3) implements
this interface. The CLI depends on BaseStore, not on a concrete backend,
so backends are swappable without touching CLI code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mergegate_store.models import CheckpointRecord


class StoreError(Exception):
    """A backend could not read or write a checkpoint."""


class BaseStore(ABC):
    """Pluggable persistence layer for review session checkpoints.

    A branch has at most one active checkpoint; finished sessions are
    archived and stay readable for ``history``. Implementations must be safe
    to call from CI environments where no interactive credentials are
    available: all auth happens via constructor arguments.
    """

    @abstractmethod
    def save(self, record: CheckpointRecord) -> None:
        """Create or replace the active checkpoint for record.branch.

        Must be durable when it returns; raises StoreError otherwise.
        """

    @abstractmethod
    def load(self, branch: str) -> CheckpointRecord | None:
        """Return the active checkpoint for a branch, or None."""

    @abstractmethod
    def archive(self, branch: str) -> None:
        """Retire the active checkpoint for a branch. A no-op if there is none."""

    @abstractmethod
    def list_archived(self, branch: str | None = None, limit: int | None = None) -> list[CheckpointRecord]:
        """Return archived checkpoints, newest first, optionally filtered by branch.

        Returns an empty list if none exist.
        """

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional; the default is a no-op so callers can always call close() safely.
        """
