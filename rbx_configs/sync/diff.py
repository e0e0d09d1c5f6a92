"""Diff engine — the minimal set of changes that brings the remote in line.

Only creates and updates are ever proposed. Flags that exist remotely
but not in the local file are left alone: a stale local file must never
delete flags someone else added.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from rbx_configs.config.models import Flag
from rbx_configs.config.store import ConfigStore


class OperationKind(Enum):
    CREATE = "create"
    UPDATE = "update"


@dataclass(frozen=True)
class Operation:
    """A single change to stage on the remote."""

    kind: OperationKind
    name: str
    flag: Flag

    @classmethod
    def create(cls, name: str, flag: Flag) -> Operation:
        return cls(OperationKind.CREATE, name, flag)

    @classmethod
    def update(cls, name: str, flag: Flag) -> Operation:
        return cls(OperationKind.UPDATE, name, flag)

    def __str__(self) -> str:
        return f"{self.kind.value} {self.name}"


@dataclass
class SyncPlan:
    """Everything the diff found, not just the operations."""

    operations: list[Operation] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    remote_only: list[str] = field(default_factory=list)  # Never touched

    @property
    def is_empty(self) -> bool:
        return not self.operations

    @property
    def creates(self) -> list[Operation]:
        return [op for op in self.operations if op.kind == OperationKind.CREATE]

    @property
    def updates(self) -> list[Operation]:
        return [op for op in self.operations if op.kind == OperationKind.UPDATE]

    def summary(self) -> str:
        if self.is_empty:
            return f"nothing to do ({len(self.unchanged)} flag(s) up to date)"
        return (
            f"{len(self.creates)} to create, {len(self.updates)} to update, "
            f"{len(self.unchanged)} unchanged"
        )


class DiffEngine:
    """Computes the operations that turn ``remote`` into ``local``."""

    def compute(self, remote: ConfigStore, local: ConfigStore) -> list[Operation]:
        """Return Create/Update operations sorted by flag name."""
        return self.plan(remote, local).operations

    def plan(self, remote: ConfigStore, local: ConfigStore) -> SyncPlan:
        plan = SyncPlan()

        for name in local.names():
            wanted = local[name]
            current = remote.get(name)
            if current is None:
                plan.operations.append(Operation.create(name, wanted))
            elif current != wanted:
                plan.operations.append(Operation.update(name, wanted))
            else:
                plan.unchanged.append(name)

        plan.remote_only = [name for name in remote.names() if name not in local]
        return plan
