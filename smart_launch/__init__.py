"""SMART on FHIR launch, authorization and authorized-request client."""
from .auth import LaunchRequest, build_authorize_url, complete_auth, get_client
from .client import Client, RequestOptions
from .config import ClientOptions, load_options
from .discovery import OAuthEndpoints, discover
from .errors import (SmartError, ConfigurationError, StateLookupError, UpstreamAuthError,
                     RefreshTokenExpired, MissingRefreshToken, UpstreamResourceError, TransportError)
from .state import LaunchState
from .storage import Storage, MemoryStorage, SMART_ID_KEY
from .transport import Transport, TransportResponse, RequestsTransport

__all__ = [
    'LaunchRequest', 'build_authorize_url', 'complete_auth', 'get_client',
    'Client', 'RequestOptions', 'ClientOptions', 'load_options',
    'OAuthEndpoints', 'discover', 'LaunchState',
    'Storage', 'MemoryStorage', 'SMART_ID_KEY',
    'Transport', 'TransportResponse', 'RequestsTransport',
    'SmartError', 'ConfigurationError', 'StateLookupError', 'UpstreamAuthError',
    'RefreshTokenExpired', 'MissingRefreshToken', 'UpstreamResourceError', 'TransportError',
]
