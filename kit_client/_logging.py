# =============================================================================
# KIT Python Client -- Logging
# =============================================================================

from __future__ import annotations

import logging

logger = logging.getLogger("kit_client")
logger.addHandler(logging.NullHandler())


def set_debug(enabled: bool = True) -> None:
    """Turn verbose session logging on or off.

    When enabled and the application has not configured logging, a stderr
    handler is attached so the session chatter is visible right away.
    """
    if not enabled:
        logger.setLevel(logging.NOTSET)
        return

    logger.setLevel(logging.DEBUG)
    has_stream = any(
        isinstance(h, logging.StreamHandler) for h in logger.handlers
    )
    if not has_stream and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
        )
        logger.addHandler(handler)
