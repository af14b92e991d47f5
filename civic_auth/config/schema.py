"""Config schema"""

import voluptuous as vol

from ..tools.exceptions import ConfigurationError
from ..tools.validation import (
    sanitize_client_secret,
    validate_client_id,
    validate_url,
)
from .const import (
    CLIENT_ID,
    CLIENT_SECRET,
    REDIRECT_URL,
    ISSUER,
    SCOPES,
    TIMEOUT,
    DISCOVERY_URL,
    DISCOVERY_PATH,
    VERBOSE_DEBUG_MODE,
    DEFAULT_SCOPES,
    DEFAULT_TIMEOUT,
)


def _client_id(value):
    value = vol.Coerce(str)(value)
    if not validate_client_id(value):
        raise vol.Invalid("client ID is required")
    return value.strip()


def _client_secret(value):
    value = sanitize_client_secret(vol.Coerce(str)(value))
    if not value:
        raise vol.Invalid("client secret is required")
    return value


def _url(value):
    value = vol.Coerce(str)(value).strip()
    if not validate_url(value):
        raise vol.Invalid(f"expected an absolute http(s) URL, got '{value}'")
    return value


def _scopes(value):
    if value is None:
        return list(DEFAULT_SCOPES)
    if isinstance(value, str):
        value = value.split()
    if not isinstance(value, (list, tuple)):
        raise vol.Invalid("expected a list of scopes or a space separated string")
    scopes = [vol.Coerce(str)(scope).strip() for scope in value]
    scopes = [scope for scope in scopes if scope]
    # An empty scope list falls back to the OIDC defaults
    return scopes or list(DEFAULT_SCOPES)


def _timeout(value):
    if value is None:
        return DEFAULT_TIMEOUT
    value = vol.Coerce(float)(value)
    if value < 0:
        raise vol.Invalid("timeout must not be negative")
    return value or DEFAULT_TIMEOUT


CONFIG_SCHEMA = vol.Schema(
    {
        # Required client ID as registered with the OIDC provider
        vol.Required(CLIENT_ID): _client_id,
        # Required client secret, sent with every token endpoint request
        vol.Required(CLIENT_SECRET): _client_secret,
        # Callback URL the provider redirects the user to after authentication
        vol.Required(REDIRECT_URL): _url,
        # OIDC issuer URL, compared exactly with the iss claim of ID tokens
        vol.Required(ISSUER): _url,
        # Scopes to request, defaults to openid profile email
        vol.Optional(SCOPES, default=lambda: list(DEFAULT_SCOPES)): _scopes,
        # Timeout in seconds applied to every HTTP request
        vol.Optional(TIMEOUT, default=DEFAULT_TIMEOUT): _timeout,
        # Override of the discovery document location
        # Defaults to <issuer>/.well-known/openid_configuration
        vol.Optional(DISCOVERY_URL): _url,
        # Added for debugging purposes
        # If enabled, logging will include more detailed information regarding
        # every step of the OIDC flow
        vol.Optional(VERBOSE_DEBUG_MODE, default=False): vol.Coerce(bool),
    },
    # Any extra fields should not go into our config right now
    extra=vol.REMOVE_EXTRA,
)


def _format_invalid(error: vol.Invalid) -> str:
    path = ".".join(str(part) for part in error.path)
    return f"{path}: {error.msg}" if path else error.msg


def validate_config(config: dict) -> dict:
    """Validates the configuration and fills in the defaults.

    Raises ConfigurationError naming every invalid or missing key.
    """
    if not isinstance(config, dict):
        raise ConfigurationError("invalid config: expected a dictionary")

    try:
        validated = CONFIG_SCHEMA(config)
    except vol.MultipleInvalid as e:
        messages = sorted(_format_invalid(error) for error in e.errors)
        raise ConfigurationError("invalid config: " + "; ".join(messages)) from e
    except vol.Invalid as e:
        raise ConfigurationError("invalid config: " + _format_invalid(e)) from e

    if DISCOVERY_URL not in validated:
        validated[DISCOVERY_URL] = validated[ISSUER].rstrip("/") + DISCOVERY_PATH

    return validated


def default_config() -> dict:
    """Returns the defaults for the optional configuration keys."""
    return {
        SCOPES: list(DEFAULT_SCOPES),
        TIMEOUT: DEFAULT_TIMEOUT,
        VERBOSE_DEBUG_MODE: False,
    }
