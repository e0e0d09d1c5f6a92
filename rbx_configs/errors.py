"""Error taxonomy for rbx-configs.

Every failure that ends a CLI invocation is a :class:`SyncError`.
Errors from the remote service are :class:`RemoteError` subclasses and
pass through the sync layer unchanged.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every terminal rbx-configs error."""

    # Flags published by earlier drafts of the same upload before the failure
    published: tuple[str, ...] = ()


class LocalFileError(SyncError):
    """The local flag file could not be read or written."""


class MalformedConfig(SyncError):
    """A flag file does not match the expected shape."""

    def __init__(self, message: str, path: str = ""):
        self.path = path  # e.g. "MyFlag.value[2]"
        super().__init__(f"{path}: {message}" if path else message)


class NothingStaged(SyncError):
    """Publish was requested but no draft is staged."""

    def __init__(self, universe_id: int, message: str = ""):
        self.universe_id = universe_id
        super().__init__(
            message or f"Nothing staged for universe {universe_id}; run upload first."
        )


class StageRejected(SyncError):
    """One or more operations in a staged batch were rejected."""

    def __init__(self, rejections: dict[str, str]):
        self.rejections = dict(rejections)
        details = ", ".join(f"{name} ({reason})" for name, reason in self.rejections.items())
        super().__init__(
            f"{len(self.rejections)} flag(s) rejected while staging: {details}. "
            "Accepted flags remain staged; run 'draft discard' or fix and re-run 'upload'."
        )

    @property
    def names(self) -> list[str]:
        return list(self.rejections)


class PartialPublish(SyncError):
    """Publishing did not apply every staged flag."""

    def __init__(self, names: list[str]):
        self.names = sorted(names)
        super().__init__(
            "Publish was only partially applied; these flags differ from the "
            f"local file: {', '.join(self.names)}. Re-run 'upload' to reconcile."
        )


# ── Remote errors ────────────────────────────────────────────────────


class RemoteError(SyncError):
    """Failure reported by (or while talking to) the remote service."""

    # Set when the failure interrupted a staged batch
    staged: tuple[str, ...] = ()  # Accepted before the failure
    unconfirmed: tuple[str, ...] = ()  # Failed or never sent


class Unauthorized(RemoteError):
    """Credentials were missing, expired, or lack access to the universe."""


class RateLimited(RemoteError):
    """The remote kept rate limiting after every allowed retry."""


class NotFound(RemoteError):
    """The universe or draft does not exist."""


class Transport(RemoteError):
    """The request never produced a usable HTTP response."""


class ServerRejected(RemoteError):
    """The remote refused the request."""

    def __init__(self, details: str, status_code: int | None = None):
        self.details = details
        self.status_code = status_code
        prefix = f"HTTP {status_code}: " if status_code else ""
        super().__init__(f"{prefix}{details}")
