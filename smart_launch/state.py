"""Launch state record persisted between the launch and the callback."""
from __future__ import annotations
import copy
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional
from .discovery import OAuthEndpoints


@dataclass
class LaunchState:
    server_url: str = ''
    client_id: str = ''
    redirect_uri: str = ''
    scope: str = ''
    client_secret: Optional[str] = None
    registration_uri: str = ''
    authorize_uri: str = ''
    token_uri: str = ''
    # raw token endpoint response; server specific fields are kept as-is
    token_response: Optional[Dict[str, Any]] = None

    @classmethod
    def create(cls, server_url: str, client_id: str, redirect_uri: str, scope: str,
               endpoints: OAuthEndpoints, client_secret: Optional[str] = None) -> 'LaunchState':
        return cls(server_url=server_url, client_id=client_id, redirect_uri=redirect_uri, scope=scope or '',
                   client_secret=client_secret, registration_uri=endpoints.registration_uri,
                   authorize_uri=endpoints.authorize_uri, token_uri=endpoints.token_uri)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LaunchState':
        known = {f.name for f in fields(cls)}
        values = {k: copy.deepcopy(v) for k, v in (data or {}).items() if k in known and v is not None}
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        if out['client_secret'] is None:
            del out['client_secret']
        if out['token_response'] is None:
            del out['token_response']
        return out

    @property
    def is_open_server(self) -> bool:
        return not self.authorize_uri
