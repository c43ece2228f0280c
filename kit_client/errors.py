# =============================================================================
# KIT Python Client -- Error Types
# =============================================================================


class KitError(Exception):
    """Base exception for all KIT client errors."""


class KitConfigError(KitError):
    """Invalid session configuration (missing URL, negative delays, ...)."""


class KitConnectionError(KitError):
    """The session closed before the awaited operation could complete."""


class KitProtocolError(KitError):
    """Wire protocol errors (malformed packets, unknown types, oversize)."""


class KitTimeoutError(KitError):
    """Operation timed out."""
