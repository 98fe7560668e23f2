"""Client configuration (env / .env driven)."""
from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from .errors import ConfigurationError

load_dotenv(dotenv_path=Path('.') / '.env', override=False)

DEFAULT_SCOPE = 'launch/patient patient/*.read openid profile offline_access'
DEFAULT_REDIRECT_URI = '/callback'
HTTP_TIMEOUT = float(os.getenv('SMART_HTTP_TIMEOUT', '60'))


@dataclass
class ClientOptions:
    client_id: str
    # relative values are resolved against the host of the launch request
    redirect_uri: str = DEFAULT_REDIRECT_URI
    scope: str = ''
    server_url: Optional[str] = None
    client_secret: Optional[str] = None


def load_options(**overrides) -> ClientOptions:
    """Build ClientOptions from SMART_* env vars; non-None overrides win."""
    values = {
        'client_id': os.getenv('SMART_CLIENT_ID'),
        'redirect_uri': os.getenv('SMART_REDIRECT_URI', DEFAULT_REDIRECT_URI),
        'scope': os.getenv('SMART_SCOPE', DEFAULT_SCOPE),
        'server_url': os.getenv('SMART_SERVER_URL') or None,
        'client_secret': os.getenv('SMART_CLIENT_SECRET') or None,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    if not values['client_id']:
        raise ConfigurationError.from_catalog('missing_client_id')
    return ClientOptions(**values)
