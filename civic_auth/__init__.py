"""OIDC/OAuth2 client for Civic Auth and other OpenID Connect providers."""

from .config import (
    CONFIG_SCHEMA as CONFIG_SCHEMA,
    default_config as default_config,
    validate_config as validate_config,
)
from .stores.token_store import (
    InMemoryTokenStorage as InMemoryTokenStorage,
    TokenStorage as TokenStorage,
)
from .token_manager import (
    TokenRefreshManager as TokenRefreshManager,
    is_token_expired as is_token_expired,
)
from .tools.exceptions import *  # noqa: F403
from .tools.id_token import IDTokenValidator as IDTokenValidator
from .tools.jwks import KeySetCache as KeySetCache, SigningKey as SigningKey
from .tools.oidc_client import (
    OIDCClient as OIDCClient,
    OIDCDiscoveryClient as OIDCDiscoveryClient,
)
from .tools.types import (
    AuthorizationFlow as AuthorizationFlow,
    AuthorizationRequest as AuthorizationRequest,
    IDTokenClaims as IDTokenClaims,
    PKCEParameters as PKCEParameters,
    ProviderMetadata as ProviderMetadata,
    TokenSet as TokenSet,
    UserInfo as UserInfo,
)
