"""In-process remote with the same draft semantics as the real service.

Useful for tests and for exercising the sync flow without credentials.
Every call is recorded in :attr:`InMemoryRemoteConfigClient.calls`.
"""

from __future__ import annotations

from rbx_configs.config.models import Flag
from rbx_configs.config.store import ConfigStore
from rbx_configs.errors import NotFound, RemoteError, Transport
from rbx_configs.remote.client import RemoteConfigClient, StageOutcome, StageReport
from rbx_configs.sync.diff import Operation, OperationKind


class InMemoryRemoteConfigClient(RemoteConfigClient):
    """A single universe held in memory.

    Parameters
    ----------
    published : ConfigStore | dict | None
        Initial published configuration.
    universe_id : int
        The only universe this remote knows; others raise NotFound.
    """

    def __init__(self, published: ConfigStore | dict | None = None, universe_id: int = 1):
        if isinstance(published, dict):
            published = ConfigStore.from_dict(published)
        self.universe_id = universe_id
        self.published: dict[str, Flag] = {n: published[n] for n in published} if published else {}
        self.draft: dict[str, Flag] | None = None
        self.calls: list[str] = []

        # Failure injection
        self.reject: dict[str, str] = {}  # flag name -> rejection reason
        self.fail_with: dict[str, RemoteError] = {}  # method name -> error raised once
        self.publish_only: set[str] | None = None  # apply just these names, then fail

    def _enter(self, method: str, universe_id: int) -> None:
        self.calls.append(method)
        if universe_id != self.universe_id:
            raise NotFound(f"universe {universe_id} not found")
        error = self.fail_with.pop(method, None)
        if error is not None:
            raise error

    def fetch(self, universe_id: int) -> ConfigStore:
        self._enter("fetch", universe_id)
        return ConfigStore(self.published)

    def stage_batch(self, universe_id: int, operations: list[Operation]) -> StageReport:
        self._enter("stage_batch", universe_id)
        if self.draft is None:
            self.draft = {}

        report = StageReport()
        for op in operations:
            reason = self.reject.get(op.name)
            exists = op.name in self.published or op.name in self.draft
            if reason is None and op.kind == OperationKind.CREATE and exists:
                reason = "EntryAlreadyExists"
            if reason is None and op.kind == OperationKind.UPDATE and not exists:
                reason = "EntryNotFound"

            if reason:
                report.outcomes.append(StageOutcome(op, accepted=False, reason=reason))
            else:
                self.draft[op.name] = op.flag
                report.outcomes.append(StageOutcome(op, accepted=True))
        return report

    def discard_draft(self, universe_id: int) -> bool:
        self._enter("discard_draft", universe_id)
        had_draft = self.draft is not None
        self.draft = None
        return had_draft

    def publish_draft(self, universe_id: int) -> None:
        self._enter("publish_draft", universe_id)
        if self.draft is None:
            raise NotFound("Failed to publish draft: No draft is present")

        if self.publish_only is not None:
            for name in self.publish_only & set(self.draft):
                self.published[name] = self.draft[name]
            self.draft = None
            raise Transport("publish interrupted")

        self.published.update(self.draft)
        self.draft = None

    @property
    def has_draft(self) -> bool:
        return self.draft is not None

    def count(self, method: str) -> int:
        return self.calls.count(method)
