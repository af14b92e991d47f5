"""Config constants."""

## ===
## General constants
## ===

DISCOVERY_PATH = "/.well-known/openid_configuration"

## ===
## Config keys
## ===

CLIENT_ID = "client_id"
CLIENT_SECRET = "client_secret"
REDIRECT_URL = "redirect_url"
ISSUER = "issuer"
SCOPES = "scopes"
TIMEOUT = "timeout"
DISCOVERY_URL = "discovery_url"
VERBOSE_DEBUG_MODE = "enable_verbose_debug_mode"

## ===
## Defaults
## ===

DEFAULT_SCOPES = ["openid", "profile", "email"]
DEFAULT_TIMEOUT = 30

# Only RSA signatures are accepted on ID tokens, "none" and HMAC never are
ALLOWED_ID_TOKEN_SIGNING_ALGORITHMS = (
    "RS256",
    "RS384",
    "RS512",
    "PS256",
    "PS384",
    "PS512",
)
