"""Per-invocation settings.

Everything an invocation needs is gathered into one :class:`SyncSettings`
object up front and passed down explicitly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from rbx_configs.remote.http import DEFAULT_BASE_URL
from rbx_configs.remote.retry import RetryPolicy

DEFAULT_FILE = "config.json"
DEFAULT_MAX_DRAFT_SIZE = 40  # The remote expires drafts that grow much past this

# ---------------------------------------------------------------------------
# Environment configuration
# ---------------------------------------------------------------------------

ENV_COOKIE = "RBX_COOKIE"
ENV_BASE_URL = "RBX_CONFIGS_BASE_URL"
ENV_MAX_DRAFT_SIZE = "RBX_CONFIGS_MAX_DRAFT_SIZE"
ENV_LOG_LEVEL = "RBX_CONFIGS_LOG"


@dataclass
class SyncSettings:
    """Settings for one CLI invocation against one universe."""

    universe_id: int
    file: Path = field(default_factory=lambda: Path(DEFAULT_FILE))
    cookie: str = ""
    base_url: str = DEFAULT_BASE_URL
    max_draft_size: int = DEFAULT_MAX_DRAFT_SIZE  # 0 = stage everything in one draft
    discard_before_upload: bool = False
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_env(cls, universe_id: int, file: str | Path | None = None, **overrides) -> SyncSettings:
        """Build settings from the environment, with explicit overrides on top."""
        max_draft_size = os.environ.get(ENV_MAX_DRAFT_SIZE, "")
        try:
            draft_size = int(max_draft_size) if max_draft_size else DEFAULT_MAX_DRAFT_SIZE
        except ValueError:
            raise ValueError(
                f"{ENV_MAX_DRAFT_SIZE} must be an integer, got {max_draft_size!r}"
            ) from None

        values = {
            "universe_id": universe_id,
            "file": Path(file or DEFAULT_FILE),
            "cookie": os.environ.get(ENV_COOKIE, ""),
            "base_url": os.environ.get(ENV_BASE_URL, DEFAULT_BASE_URL),
            "max_draft_size": max(draft_size, 0),
        }
        values.update(overrides)
        return cls(**values)

    @property
    def has_credentials(self) -> bool:
        return bool(self.cookie)
