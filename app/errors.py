"""Exception types raised by the upstream adapters."""

from __future__ import annotations


class AddonError(Exception):
    """Base class for failures the addon converts into degraded responses."""


class AuthError(AddonError):
    """The library service rejected the login exchange or the session token."""


class UpstreamError(AddonError):
    """An upstream call failed or returned an unexpected payload."""


class NotFoundError(UpstreamError):
    """The requested identifier has no corresponding upstream record."""


class CacheCorruptionError(AddonError):
    """A persisted cache document could not be read back."""
