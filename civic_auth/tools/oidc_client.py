"""OIDC Client class"""

import asyncio
import logging
import urllib.parse
from typing import Optional

import aiohttp

from ..config.const import (
    ALLOWED_ID_TOKEN_SIGNING_ALGORITHMS,
    CLIENT_ID,
    CLIENT_SECRET,
    DISCOVERY_URL,
    ISSUER,
    REDIRECT_URL,
    SCOPES,
    TIMEOUT,
    VERBOSE_DEBUG_MODE,
)
from ..config.schema import validate_config
from .exceptions import (
    ConfigurationError,
    DiscoveryError,
    HTTPClientError,
    KeySetFetchError,
    RefreshError,
    TokenEndpointError,
    TokenExchangeError,
    UserInfoError,
)
from .helpers import generate_nonce, generate_pkce_pair, generate_state
from .http import client_timeout, decode_json_object, http_raise_for_status
from .id_token import IDTokenValidator
from .jwks import KeySetCache
from .types import (
    AuthorizationFlow,
    AuthorizationRequest,
    IDTokenClaims,
    ProviderMetadata,
    TokenSet,
    UserInfo,
)
from .validation import normalize_issuer, validate_url

_LOGGER = logging.getLogger(__name__)

# Network level failures, these never carry an HTTP status
TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)

ENDPOINT_FIELDS = (
    "authorization_endpoint",
    "token_endpoint",
    "userinfo_endpoint",
    "jwks_uri",
    "end_session_endpoint",
)


class OIDCDiscoveryClient:
    """OIDC Discovery Client implementation for Python"""

    def __init__(
        self,
        discovery_url: str,
        http_session: aiohttp.ClientSession,
        timeout: float,
        expected_issuer: Optional[str] = None,
    ):
        self.discovery_url = discovery_url
        self.http_session = http_session
        self.timeout = timeout
        self.expected_issuer = expected_issuer

    async def _fetch_discovery_document(self) -> dict:
        """Fetches discovery document from the given URL."""
        _LOGGER.debug("Attempting to fetch discovery document from: %s", self.discovery_url)

        try:
            async with self.http_session.get(
                self.discovery_url,
                headers={"Accept": "application/json"},
                timeout=client_timeout(self.timeout),
            ) as response:
                response_text = await response.text()
                http_raise_for_status(response, response_text)
        except HTTPClientError as e:
            if e.status == 404:
                _LOGGER.warning(
                    "Error: Discovery document not found at %s", self.discovery_url
                )
            else:
                _LOGGER.warning("Error fetching discovery: %s", e)
            raise DiscoveryError(
                type="fetch_error", details={"status": e.status}
            ) from e
        except TRANSPORT_ERRORS as e:
            _LOGGER.warning(
                "Error fetching discovery from %s: %r", self.discovery_url, e
            )
            raise DiscoveryError(type="fetch_error") from e

        try:
            return decode_json_object(response_text)
        except ValueError as e:
            _LOGGER.warning(
                "Error: Discovery document %s is not a JSON object", self.discovery_url
            )
            raise DiscoveryError(type="invalid_json") from e

    async def _fetch_jwks(self, jwks_uri: str) -> dict:
        """Fetches JWKS from the given URL."""
        _LOGGER.debug("Retrieving JWKS keys from endpoint: %s", jwks_uri)

        try:
            async with self.http_session.get(
                jwks_uri,
                headers={"Accept": "application/json"},
                timeout=client_timeout(self.timeout),
            ) as response:
                response_text = await response.text()
                http_raise_for_status(response, response_text)
        except (HTTPClientError, *TRANSPORT_ERRORS) as e:
            _LOGGER.warning("Error fetching JWKS: %s", e)
            raise KeySetFetchError(f"Failed to fetch JWK set from {jwks_uri}") from e

        try:
            return decode_json_object(response_text)
        except ValueError as e:
            _LOGGER.warning("Error: JWKS from %s is not a JSON object", jwks_uri)
            raise KeySetFetchError(f"Failed to decode JWK set from {jwks_uri}") from e

    def _check_endpoint(self, document: dict, endpoint: str, required: bool) -> None:
        if endpoint not in document:
            if not required:
                return
            _LOGGER.warning(
                "Error: Discovery document %s is missing required endpoint: %s",
                self.discovery_url,
                endpoint,
            )
            raise DiscoveryError(type="missing_endpoint", details={"endpoint": endpoint})

        if validate_url(document[endpoint]) is False:
            _LOGGER.warning(
                "Error: Discovery document %s has invalid URL in endpoint: %s (%s)",
                self.discovery_url,
                endpoint,
                document[endpoint],
            )
            raise DiscoveryError(
                type="invalid_endpoint",
                details={"endpoint": endpoint, "url": document[endpoint]},
            )

    def _check_supported(
        self, document: dict, field: str, required: str, error_type: str
    ) -> None:
        if field not in document:
            return

        if not isinstance(document[field], list):
            _LOGGER.warning(
                "Error: Discovery document %s has invalid %s: %s",
                self.discovery_url,
                field,
                document[field],
            )
            raise DiscoveryError(
                type=error_type,
                details={"required": required, "supported": document[field]},
            )

        if required not in document[field]:
            _LOGGER.warning(
                "Error: Discovery document %s does not support required "
                "'%s' in %s, only supports: %s",
                self.discovery_url,
                required,
                field,
                document[field],
            )
            raise DiscoveryError(
                type=error_type,
                details={"required": required, "supported": document[field]},
            )

    def _validate_discovery_document(self, document: dict) -> None:
        """Validates the discovery document."""
        for endpoint in ("issuer", "authorization_endpoint", "token_endpoint"):
            self._check_endpoint(document, endpoint, required=True)

        # Absent optional endpoints only fail the operations that need them
        for endpoint in ("jwks_uri", "userinfo_endpoint", "end_session_endpoint"):
            self._check_endpoint(document, endpoint, required=False)

        # OpenID Connect Discovery 1.0 §2.1 & Core 1.0 §3.1.3.7.2: the issuer of
        # the document must be on the configured issuer (normalized: scheme/host only)
        if self.expected_issuer is not None:
            expected_issuer = normalize_issuer(self.expected_issuer)
            actual_issuer = normalize_issuer(document["issuer"])
            if expected_issuer != actual_issuer:
                _LOGGER.warning(
                    "Error: Discovery issuer mismatch. Expected (normalized): %s, got: %s",
                    expected_issuer,
                    actual_issuer,
                )
                raise DiscoveryError(
                    type="issuer_mismatch",
                    details={"expected": expected_issuer, "actual": actual_issuer},
                )

            # Every endpoint must live on the issuer's scheme and host
            for endpoint in ENDPOINT_FIELDS:
                if endpoint not in document:
                    continue
                if normalize_issuer(document[endpoint]) != expected_issuer:
                    _LOGGER.warning(
                        "Error: Discovery document %s has endpoint %s outside "
                        "the issuer %s: %s",
                        self.discovery_url,
                        endpoint,
                        expected_issuer,
                        document[endpoint],
                    )
                    raise DiscoveryError(
                        type="untrusted_endpoint",
                        details={"endpoint": endpoint, "url": document[endpoint]},
                    )

        # Authorization requests always use response_mode=query
        self._check_supported(
            document,
            "response_modes_supported",
            "query",
            "does_not_support_response_mode",
        )
        self._check_supported(
            document,
            "grant_types_supported",
            "authorization_code",
            "does_not_support_grant_type",
        )
        self._check_supported(
            document,
            "response_types_supported",
            "code",
            "does_not_support_response_type",
        )
        self._check_supported(
            document,
            "code_challenge_methods_supported",
            "S256",
            "does_not_support_required_code_challenge_method",
        )

        # WARN only, the provider may still sign with RSA
        signing_values = document.get("id_token_signing_alg_values_supported")
        if isinstance(signing_values, list) and not any(
            alg in ALLOWED_ID_TOKEN_SIGNING_ALGORITHMS for alg in signing_values
        ):
            _LOGGER.warning(
                "Discovery document %s does not advertise any RSA "
                "id_token_signing_alg, only supports: %s. Proceeding anyway.",
                self.discovery_url,
                signing_values,
            )

    async def fetch_discovery_document(self) -> dict:
        """Fetches discovery document."""
        document = await self._fetch_discovery_document()
        self._validate_discovery_document(document)
        return document

    async def fetch_jwks(self, jwks_uri: str) -> dict:
        """Fetches JWKS."""
        return await self._fetch_jwks(jwks_uri)


# pylint: disable=too-many-instance-attributes
class OIDCClient:
    """OIDC Client implementation for Python, including PKCE.

    Use ``await OIDCClient.async_create(config)`` to obtain a client with
    discovered provider metadata. A client is only returned when discovery
    succeeded.
    """

    def __init__(
        self,
        config: dict,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        config = validate_config(config)

        self.client_id = config[CLIENT_ID]
        self.client_secret = config[CLIENT_SECRET]
        self.redirect_url = config[REDIRECT_URL]
        self.issuer = config[ISSUER]
        self.scopes = config[SCOPES]
        self.timeout = config[TIMEOUT]
        self.discovery_url = config[DISCOVERY_URL]

        # Sessions we create are ours to close, injected ones belong to the caller
        self.http_session = http_session
        self._owns_http_session = http_session is None

        self.provider: Optional[ProviderMetadata] = None
        self.discovery_class: Optional[OIDCDiscoveryClient] = None
        self.id_token_validator: Optional[IDTokenValidator] = None

        self.verbose_debug_mode = config[VERBOSE_DEBUG_MODE]
        if self.verbose_debug_mode:
            _LOGGER.warning(
                "VERBOSE_DEBUG_MODE is enabled so detailed token request and response "
                + "logging is active. Do NOT leave this enabled in production!"
            )
            _LOGGER.info(
                "The following scopes will be included in auth request: %s",
                " ".join(self.scopes),
            )

    @classmethod
    async def async_create(
        cls,
        config: dict,
        http_session: Optional[aiohttp.ClientSession] = None,
    ) -> "OIDCClient":
        """Creates a client and discovers the provider metadata."""
        client = cls(config, http_session)
        try:
            await client.async_discover()
        except Exception:
            await client.async_close()
            raise
        return client

    async def __aenter__(self) -> "OIDCClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.async_close()

    async def async_close(self) -> None:
        """Closes the HTTP session if this client created it."""
        if self._owns_http_session and self.http_session is not None:
            _LOGGER.debug("Closing HTTP session")
            await self.http_session.close()
            self.http_session = None

    def _get_http_session(self) -> aiohttp.ClientSession:
        """Create or get the existing client session"""
        if self.http_session is None:
            _LOGGER.debug("Creating HTTP session with timeout: %ss", self.timeout)
            self.http_session = aiohttp.ClientSession(
                timeout=client_timeout(self.timeout)
            )
        return self.http_session

    def _require_provider(self) -> ProviderMetadata:
        if self.provider is None:
            raise ConfigurationError("provider not initialized")
        return self.provider

    async def async_discover(self) -> ProviderMetadata:
        """Fetches the provider metadata, once per client."""
        if self.provider is not None:
            return self.provider

        self.discovery_class = OIDCDiscoveryClient(
            discovery_url=self.discovery_url,
            http_session=self._get_http_session(),
            timeout=self.timeout,
            expected_issuer=self.issuer,
        )

        document = await self.discovery_class.fetch_discovery_document()
        provider = ProviderMetadata.from_document(document)

        self.id_token_validator = IDTokenValidator(
            KeySetCache(
                self.discovery_class,
                provider.jwks_uri,
                verbose_debug_mode=self.verbose_debug_mode,
            ),
            issuer=self.issuer,
            client_id=self.client_id,
            verbose_debug_mode=self.verbose_debug_mode,
        )
        self.provider = provider

        _LOGGER.info("Discovered OIDC provider %s", provider.issuer)
        return provider

    def build_authorization_url(
        self, options: Optional[AuthorizationRequest] = None
    ) -> str:
        """Generates the authorization URL for the OIDC flow."""
        provider = self._require_provider()

        # Construct the params
        query_params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "scope": " ".join(self.scopes),
            "response_mode": "query",
        }

        if options is not None:
            if options.state:
                query_params["state"] = options.state
            if options.nonce:
                query_params["nonce"] = options.nonce
            if options.code_challenge:
                query_params["code_challenge"] = options.code_challenge
                query_params["code_challenge_method"] = "S256"
            if options.prompt:
                query_params["prompt"] = options.prompt
            if options.max_age and options.max_age > 0:
                query_params["max_age"] = str(options.max_age)
            if options.login_hint:
                query_params["login_hint"] = options.login_hint

        return f"{provider.authorization_endpoint}?{urllib.parse.urlencode(query_params)}"

    def create_authorization_flow(self, nonce: bool = False) -> AuthorizationFlow:
        """Generates state and PKCE parameters and the matching authorization URL.

        The returned state and code verifier (and nonce, if requested) must be
        kept by the caller until the user returns from the provider.
        """
        state = generate_state()
        pkce = generate_pkce_pair()
        flow_nonce = generate_nonce() if nonce else None

        url = self.build_authorization_url(
            AuthorizationRequest(
                state=state,
                nonce=flow_nonce,
                code_challenge=pkce.code_challenge,
            )
        )

        if self.verbose_debug_mode:
            _LOGGER.debug("Created authorization flow with state %s", state)

        return AuthorizationFlow(
            url=url, state=state, code_verifier=pkce.code_verifier, nonce=flow_nonce
        )

    def get_logout_url(
        self,
        post_logout_redirect_uri: Optional[str] = None,
        id_token_hint: Optional[str] = None,
    ) -> str:
        """Generates the RP-initiated logout URL."""
        if self.provider is None or not self.provider.end_session_endpoint:
            raise ConfigurationError("logout endpoint not available")

        query_params = {}
        if post_logout_redirect_uri:
            query_params["post_logout_redirect_uri"] = post_logout_redirect_uri
        if id_token_hint:
            query_params["id_token_hint"] = id_token_hint

        logout_url = self.provider.end_session_endpoint
        if query_params:
            logout_url += "?" + urllib.parse.urlencode(query_params)
        return logout_url

    async def _make_token_request(
        self,
        query_params: dict,
        error_class: type[TokenEndpointError],
    ) -> TokenSet:
        """Performs the token POST call"""
        token_endpoint = self._require_provider().token_endpoint

        if self.verbose_debug_mode:
            _LOGGER.debug(
                "Attempting %s token request via Endpoint URL: %s",
                query_params["grant_type"],
                token_endpoint,
            )

        try:
            async with self._get_http_session().post(
                token_endpoint,
                data=query_params,
                headers={"Accept": "application/json"},
                timeout=client_timeout(self.timeout),
            ) as response:
                response_text = await response.text()
                http_raise_for_status(response, response_text)
        except HTTPClientError as e:
            if e.status == 400:
                _LOGGER.warning(
                    "Error: Token could not be obtained (%s, %s), Server returned: %s",
                    e.status,
                    e.message,
                    e.body,
                )
            else:
                _LOGGER.warning("Unexpected error from token endpoint: %s", e)
            raise error_class(
                f"{query_params['grant_type']} request failed",
                status=e.status,
                body=e.body,
            ) from e
        except TRANSPORT_ERRORS as e:
            _LOGGER.warning("Token request to %s failed: %r", token_endpoint, e)
            raise error_class(
                f"{query_params['grant_type']} request failed: {e!r}"
            ) from e

        try:
            token_set = TokenSet.from_response(decode_json_object(response_text))
        except (ValueError, KeyError) as e:
            _LOGGER.error("Unhandled token response (not JSON or no access_token)")
            raise error_class(
                "Token response is invalid", status=response.status, body=response_text
            ) from e

        if self.verbose_debug_mode:
            _LOGGER.debug("Success! Token received from Endpoint: %s", token_endpoint)

        return token_set

    async def async_exchange_code(self, code: str, code_verifier: str) -> TokenSet:
        """Exchanges an authorization code for tokens."""
        query_params = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "redirect_uri": self.redirect_url,
        }

        if code_verifier:
            query_params["code_verifier"] = code_verifier

        return await self._make_token_request(query_params, TokenExchangeError)

    async def async_refresh(self, refresh_token: str) -> TokenSet:
        """Exchanges a refresh token for new tokens."""
        query_params = {
            "grant_type": "refresh_token",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
        }

        return await self._make_token_request(query_params, RefreshError)

    async def async_fetch_userinfo(self, access_token: str) -> UserInfo:
        """Fetches the userinfo of the user owning the access token."""
        userinfo_uri = self._require_provider().userinfo_endpoint
        if not userinfo_uri:
            _LOGGER.warning("Provider does not advertise a userinfo_endpoint")
            raise DiscoveryError(
                type="missing_endpoint", details={"endpoint": "userinfo_endpoint"}
            )

        headers = {
            "Authorization": "Bearer " + access_token,
            "Accept": "application/json",
        }

        try:
            async with self._get_http_session().get(
                userinfo_uri,
                headers=headers,
                timeout=client_timeout(self.timeout),
            ) as response:
                response_text = await response.text()
                http_raise_for_status(response, response_text)
        except HTTPClientError as e:
            _LOGGER.warning("Error fetching userinfo: %s", e)
            raise UserInfoError(
                "userinfo request failed", status=e.status, body=e.body
            ) from e
        except TRANSPORT_ERRORS as e:
            _LOGGER.warning("Userinfo request to %s failed: %r", userinfo_uri, e)
            raise UserInfoError(f"userinfo request failed: {e!r}") from e

        try:
            userinfo = decode_json_object(response_text)
        except ValueError as e:
            raise UserInfoError(
                "Userinfo response is not JSON",
                status=response.status,
                body=response_text,
            ) from e

        if not userinfo.get("sub"):
            raise UserInfoError(
                "Userinfo response has no sub claim",
                status=response.status,
                body=response_text,
            )

        return UserInfo.from_claims(userinfo)

    async def async_validate_id_token(
        self,
        id_token: str,
        nonce: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> IDTokenClaims:
        """Validates an ID token issued to this client."""
        self._require_provider()
        return await self.id_token_validator.validate(
            id_token, nonce=nonce, access_token=access_token
        )
