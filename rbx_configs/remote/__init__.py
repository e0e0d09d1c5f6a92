"""Clients for the remote universe configuration service."""

from rbx_configs.remote.client import RemoteConfigClient, StageOutcome, StageReport
from rbx_configs.remote.http import HttpRemoteConfigClient
from rbx_configs.remote.memory import InMemoryRemoteConfigClient
from rbx_configs.remote.retry import RetryPolicy

__all__ = [
    "HttpRemoteConfigClient",
    "InMemoryRemoteConfigClient",
    "RemoteConfigClient",
    "RetryPolicy",
    "StageOutcome",
    "StageReport",
]
