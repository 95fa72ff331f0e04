from .base import OAuthProvider
from .facebook import FacebookOAuthProvider
from .generic import GenericOAuth2Provider
from .google import GoogleOAuthProvider
from .microsoft import MicrosoftOAuthProvider

__all__ = [
    "OAuthProvider",
    "GoogleOAuthProvider",
    "MicrosoftOAuthProvider",
    "FacebookOAuthProvider",
    "GenericOAuth2Provider",
]
