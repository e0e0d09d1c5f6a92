"""The remote configuration service boundary.

Everything the sync layer needs from the remote service goes through
:class:`RemoteConfigClient`. Implementations are responsible for their
own retries; callers treat every raised :class:`RemoteError` as final.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from rbx_configs.config.store import ConfigStore
from rbx_configs.sync.diff import Operation


@dataclass
class StageOutcome:
    """Result of staging one operation."""

    operation: Operation
    accepted: bool
    reason: str = ""  # Remote error code when rejected


@dataclass
class StageReport:
    """Per-operation results of a staged batch."""

    outcomes: list[StageOutcome] = field(default_factory=list)

    @property
    def accepted(self) -> list[Operation]:
        return [o.operation for o in self.outcomes if o.accepted]

    @property
    def rejected(self) -> dict[str, str]:
        return {o.operation.name: o.reason for o in self.outcomes if not o.accepted}

    @property
    def all_accepted(self) -> bool:
        return all(o.accepted for o in self.outcomes)


class RemoteConfigClient(ABC):
    """Abstract RPC interface to a universe's configuration."""

    @abstractmethod
    def fetch(self, universe_id: int) -> ConfigStore:
        """Return the published configuration."""

    @abstractmethod
    def stage_batch(self, universe_id: int, operations: list[Operation]) -> StageReport:
        """Stage operations into the universe's draft."""

    @abstractmethod
    def discard_draft(self, universe_id: int) -> bool:
        """Throw away the staged draft.

        Returns False when there was no draft to discard.
        """

    @abstractmethod
    def publish_draft(self, universe_id: int) -> None:
        """Commit the staged draft to the published configuration."""

    def close(self) -> None:
        """Release any held connections."""
