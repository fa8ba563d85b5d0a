"""
Error taxonomy shared by the reconciler and the API.

Upstream errors are raised by the feed adapter and caught per unit of work
by the reconciler; only ConfigurationError is allowed to stop a process.
"""
from __future__ import annotations

from typing import Optional


class MatchSyncError(Exception):
    """Base class for all matchsync errors."""


class UpstreamUnavailable(MatchSyncError):
    """Network failure, timeout, 429 or 5xx after the HTTP client's retries."""

    def __init__(self, path: str, reason: str, status: Optional[int] = None) -> None:
        self.path = path
        self.reason = reason
        self.status = status
        super().__init__(f"upstream unavailable: {path} ({reason})")


class UpstreamMalformed(MatchSyncError):
    """Upstream answered but the payload has an unexpected shape."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"upstream malformed: {path} ({reason})")


class IdentityConflict(MatchSyncError):
    """The store rejected a write because primary_id is already claimed."""

    def __init__(self, primary_id: str) -> None:
        self.primary_id = primary_id
        super().__init__(f"primary_id already claimed: {primary_id}")


class NotFound(MatchSyncError):
    """Consumer-facing lookup miss."""

    def __init__(self, resource: str, key: str) -> None:
        self.resource = resource
        self.key = key
        super().__init__(f"{resource} not found: {key}")


class ConfigurationError(MatchSyncError):
    """Startup misconfiguration: missing credentials or unreachable store."""
