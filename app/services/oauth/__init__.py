"""OAuth 2.0 / OpenID Connect login flows.

Providers:
- Google (OAuth 2.0 + OpenID Connect)
- Microsoft (Entra ID, tenant-aware)
- Facebook (Graph API)
- Generic OAuth2 (configured by URL and scope)
"""
from .factory import build_providers, callback_url, create_oauth_controller
from .providers import (
    FacebookOAuthProvider,
    GenericOAuth2Provider,
    GoogleOAuthProvider,
    MicrosoftOAuthProvider,
    OAuthProvider,
)
from .service import AuthorizationRedirect, FlowState, LoginOutcome, OAuthFlowController
from .state_store import InMemoryStateStore, PendingLogin, RedisStateStore, get_state_store

__all__ = [
    # Providers
    "OAuthProvider",
    "GoogleOAuthProvider",
    "MicrosoftOAuthProvider",
    "FacebookOAuthProvider",
    "GenericOAuth2Provider",
    # Controller
    "OAuthFlowController",
    "FlowState",
    "AuthorizationRedirect",
    "LoginOutcome",
    # State
    "PendingLogin",
    "InMemoryStateStore",
    "RedisStateStore",
    "get_state_store",
    # Factory
    "build_providers",
    "callback_url",
    "create_oauth_controller",
]
