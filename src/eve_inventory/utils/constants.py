"""Centralized constants for EVE Inventory."""

# Endpoints
SSO_BASE_URL = "https://login.eveonline.com/v2/oauth"
SSO_AUTHORIZE_PATH = "/authorize"
SSO_TOKEN_PATH = "/token"
SSO_VERIFY_URL = "https://login.eveonline.com/oauth/verify"
ESI_BASE_URL = "https://esi.evetech.net/latest"

USER_AGENT = "EVE-Inventory-Manager/1.0.0 (eve-inventory)"

# Local callback listener
CALLBACK_PATH = "/auth/callback"
DEFAULT_CALLBACK_HOST = "localhost"
DEFAULT_CALLBACK_PORT = 8080
DEFAULT_CALLBACK_PORT_ATTEMPTS = 10
DEFAULT_CALLBACK_TIMEOUT = 300.0
DEFAULT_CALLBACK_GRACE = 6.0

# PKCE code verifier length in characters (RFC 7636 allows 43 to 128)
PKCE_VERIFIER_LENGTH = 43

# Rate limiting
DEFAULT_REQUESTS_PER_SECOND = 150
DEFAULT_RATE_LIMIT_RETRIES = 5
DEFAULT_RETRY_AFTER = 60.0
RATE_LIMIT_STATUSES = (420, 429)

# Timeouts and cache windows (seconds)
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_CACHE_FRESHNESS = 1800
DEFAULT_EXPIRY_MARGIN = 300

# IDs at or above this value are player-owned structures.
PLAYER_STRUCTURE_ID_MIN = 1_000_000_000_000

# NPC station and solar system ID ranges, end exclusive.
NPC_STATION_ID_RANGE = (60_000_000, 64_000_000)
SOLAR_SYSTEM_ID_RANGE = (30_000_000, 33_000_000)

# Security classification thresholds
HIGH_SEC_THRESHOLD = 0.5
NULL_SEC_THRESHOLD = 0.0
