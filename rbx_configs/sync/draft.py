"""Draft lifecycle — stage operations, then discard or publish them.

The remote keeps at most one draft per universe. The controller only
tracks what *this* session did to it:

    IDLE --stage(ops)--> STAGED --discard()/publish()--> IDLE

Nothing is rolled back automatically. If a batch is partially rejected
the accepted operations stay staged until someone discards or publishes.
"""

from __future__ import annotations

import logging
from enum import Enum

from rbx_configs.errors import (
    NotFound,
    NothingStaged,
    PartialPublish,
    RateLimited,
    RemoteError,
    StageRejected,
    Unauthorized,
)
from rbx_configs.remote.client import RemoteConfigClient, StageReport
from rbx_configs.sync.diff import Operation

logger = logging.getLogger(__name__)

# Errors that guarantee the remote applied nothing
_CLEAN_FAILURES = (Unauthorized, RateLimited)


class DraftState(Enum):
    IDLE = "idle"
    STAGED = "staged"


class DraftController:
    """Stages, discards and publishes the draft of one universe."""

    def __init__(self, client: RemoteConfigClient, universe_id: int):
        self.client = client
        self.universe_id = universe_id
        self.state = DraftState.IDLE
        self.staged: list[Operation] = []

    def stage(self, operations: list[Operation]) -> StageReport:
        """Stage ``operations`` into the remote draft.

        An empty list is a no-op and makes no remote call.

        Raises:
            StageRejected: if the remote rejected any operation. The
                accepted ones remain staged.
        """
        if not operations:
            logger.debug("Nothing to stage")
            return StageReport()

        # The remote may hold partial state even if the call fails midway
        self.state = DraftState.STAGED
        report = self.client.stage_batch(self.universe_id, list(operations))
        self.staged.extend(report.accepted)

        if not report.all_accepted:
            raise StageRejected(report.rejected)

        logger.debug("Staged %d operation(s)", len(report.accepted))
        return report

    def discard(self) -> bool:
        """Throw away the remote draft. Safe to call when there is none.

        Returns True if a draft was actually discarded.
        """
        try:
            discarded = self.client.discard_draft(self.universe_id)
        except NotFound:
            discarded = False

        if not discarded:
            logger.debug("No draft to discard for universe %s", self.universe_id)
        self._reset()
        return discarded

    def publish(self, require_staged: bool = True) -> None:
        """Commit the staged draft.

        Args:
            require_staged: refuse to publish unless :meth:`stage` ran in
                this session. Pass False to publish a draft staged elsewhere.

        Raises:
            NothingStaged: nothing staged in this session, or the remote
                has no draft.
            PartialPublish: the publish failed after some staged flags
                were already applied.
        """
        if require_staged and self.state != DraftState.STAGED:
            raise NothingStaged(self.universe_id)

        try:
            self.client.publish_draft(self.universe_id)
        except NotFound as e:
            # A publish that applied the draft but failed to answer leaves no draft behind
            missing_draft = NothingStaged(
                self.universe_id, f"No draft is present for universe {self.universe_id}."
            )
            try:
                self._check_partial_publish(e, failure=missing_draft)
            finally:
                self._reset()
        except _CLEAN_FAILURES:
            raise
        except RemoteError as e:
            self._check_partial_publish(e)
        else:
            logger.debug("Published draft for universe %s", self.universe_id)

        self._reset()

    def _check_partial_publish(
        self, error: RemoteError, failure: Exception | None = None
    ) -> None:
        """After an ambiguous publish failure, find out what actually landed.

        Raises ``failure`` (``error`` itself by default) when nothing landed
        or nothing is known to have been staged, raises PartialPublish when
        only some did and returns normally when everything landed.
        """
        if not self.staged:
            _fail(error, failure)

        logger.warning("Publish failed (%s); checking which flags were applied...", error)
        try:
            remote = self.client.fetch(self.universe_id)
        except RemoteError:
            _fail(error, failure)

        missing = [op.name for op in self.staged if remote.get(op.name) != op.flag]
        if len(missing) == len(self.staged):
            _fail(error, failure)
        if missing:
            self._reset()
            raise PartialPublish(missing) from error

        logger.warning("Publish reported an error but every staged flag is live")

    def _reset(self) -> None:
        self.state = DraftState.IDLE
        self.staged = []


def _fail(error: RemoteError, failure: Exception | None) -> None:
    if failure is None:
        raise error
    raise failure from error
