# =============================================================================
# KIT Python Client -- Protocol Constants
# =============================================================================
#
# Packet layout: 1 byte type | 3 bytes big-endian body length | body
# Values must match the server.
# =============================================================================

# -- Packets -------------------------------------------------------------------

PACKET_HEAD_LENGTH = 4
PACKET_MAX_SIZE = 64 * 1024

# -- Messages ------------------------------------------------------------------

MESSAGE_TYPE_MASK = 0x07
MESSAGE_ROUTE_MAX_LENGTH = 0xFF
MESSAGE_HEAD_LENGTH = 2

# -- Reconnection --------------------------------------------------------------

RECONNECT_MAX_ATTEMPTS = 10
RECONNECT_DELAY = 2.0  # seconds, fixed (no backoff, no jitter)

# -- Timing (seconds) --------------------------------------------------------

CLOSE_GRACE_DELAY = 0.1  # lets the kick packet flush before teardown
CONNECTION_TIMEOUT = 10.0

# -- Handshake -----------------------------------------------------------------

HANDSHAKE_OK = 200

# -- Body serializers ----------------------------------------------------------

SERIALIZER_JSON = "json"
SERIALIZER_MSGPACK = "msgpack"
SERIALIZERS = (SERIALIZER_JSON, SERIALIZER_MSGPACK)

# -- WebSocket close codes -----------------------------------------------------

WS_CLOSE_NORMAL = 1000
