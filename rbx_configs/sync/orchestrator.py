"""Sync orchestrator — the user-facing operations.

Calls run strictly in sequence (read, fetch, diff, stage, publish) and
nothing here retries: a remote error ends the operation as-is.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from rbx_configs.config.store import ConfigStore, read_local, write_local
from rbx_configs.errors import SyncError
from rbx_configs.remote.client import RemoteConfigClient
from rbx_configs.settings import SyncSettings
from rbx_configs.sync.diff import DiffEngine, Operation, SyncPlan
from rbx_configs.sync.draft import DraftController

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    """What an upload did."""

    plan: SyncPlan
    published: list[str] = field(default_factory=list)  # Flag names now live
    drafts_published: int = 0
    dry_run: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.published)

    def summary(self) -> str:
        if self.plan.is_empty:
            return "Nothing to do: remote already matches the local file."
        if self.dry_run:
            return f"Dry run: {self.plan.summary()}"
        return (
            f"Published {len(self.published)} flag(s) in {self.drafts_published} draft(s); "
            f"{len(self.plan.unchanged)} unchanged"
        )


class SyncOrchestrator:
    """Runs download / upload / draft operations for one universe."""

    def __init__(
        self,
        client: RemoteConfigClient,
        settings: SyncSettings,
        diff: DiffEngine | None = None,
    ):
        self.client = client
        self.settings = settings
        self.diff = diff or DiffEngine()
        self.drafts = DraftController(client, settings.universe_id)

    @property
    def universe_id(self) -> int:
        return self.settings.universe_id

    # -- operations ----------------------------------------------------------

    def download(self, path: str | Path | None = None) -> ConfigStore:
        """Write the published remote configuration to the local file."""
        path = Path(path or self.settings.file)
        logger.info("Fetching configs for universe %s...", self.universe_id)
        remote = self.client.fetch(self.universe_id)
        write_local(remote, path)
        logger.info("Wrote %d flag(s) to %s", len(remote), path)
        return remote

    def plan(self, path: str | Path | None = None) -> SyncPlan:
        """Diff the local file against the remote without changing anything."""
        return self._plan(read_local(Path(path or self.settings.file)))

    def _plan(self, local: ConfigStore) -> SyncPlan:
        logger.info("Fetching existing configs...")
        remote = self.client.fetch(self.universe_id)
        plan = self.diff.plan(remote, local)

        if plan.unchanged:
            logger.info("Ignoring existing flags: %s", ", ".join(plan.unchanged))
        if plan.remote_only:
            logger.debug("Leaving remote-only flags untouched: %s", ", ".join(plan.remote_only))
        return plan

    def upload(self, path: str | Path | None = None, dry_run: bool = False) -> UploadResult:
        """Stage and publish every flag that differs from the remote.

        Makes no stage or publish call when nothing differs.
        """
        path = Path(path or self.settings.file)
        # Parse the local file before touching the remote at all
        local = read_local(path)

        if self.settings.discard_before_upload and not dry_run:
            logger.info("Discarding any existing staged changes...")
            self.drafts.discard()

        plan = self._plan(local)
        result = UploadResult(plan=plan, dry_run=dry_run)

        if plan.is_empty:
            logger.info("No new or updated flags to upload.")
            return result
        if dry_run:
            return result

        logger.info("Uploading configs (%s)...", plan.summary())
        try:
            for batch in self._batches(plan.operations):
                self.drafts.stage(batch)
                logger.info("Publishing %d staged change(s)...", len(batch))
                self.drafts.publish()
                result.published.extend(op.name for op in batch)
                result.drafts_published += 1
        except SyncError as e:
            if result.published:
                logger.error(
                    "Upload stopped after %d draft(s); already published: %s",
                    result.drafts_published,
                    ", ".join(result.published),
                )
                e.published = tuple(result.published)
            raise

        logger.info("Config upload complete.")
        return result

    def draft_discard(self) -> bool:
        """Discard whatever is staged remotely, regardless of the local file."""
        logger.info("Discarding staged changes...")
        return self.drafts.discard()

    def draft_publish(self) -> None:
        """Publish whatever is staged remotely."""
        logger.info("Publishing staged changes...")
        self.drafts.publish(require_staged=False)

    # -- helpers -------------------------------------------------------------

    def _batches(self, operations: list[Operation]) -> Iterator[list[Operation]]:
        size = self.settings.max_draft_size
        if size <= 0 or len(operations) <= size:
            yield list(operations)
            return

        logger.info(
            "%d changes exceed the draft limit of %d; publishing in batches",
            len(operations),
            size,
        )
        for start in range(0, len(operations), size):
            yield operations[start : start + size]
