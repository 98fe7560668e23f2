"""OAuth endpoint discovery from a FHIR server's conformance statement."""
from __future__ import annotations
import logging
from dataclasses import dataclass, asdict
from typing import Optional
from .errors import TransportError
from .lib import get_path
from .transport import Transport, RequestsTransport

logger = logging.getLogger(__name__)

OAUTH_URIS_EXTENSION = 'http://fhir-registry.smarthealthit.org/StructureDefinition/oauth-uris'


@dataclass
class OAuthEndpoints:
    registration_uri: str = ''
    authorize_uri: str = ''
    token_uri: str = ''

    def to_dict(self) -> dict:
        return asdict(self)


def metadata_url(server_url: str) -> str:
    return str(server_url or '').rstrip('/') + '/metadata'


def discover(server_url: str, transport: Optional[Transport] = None) -> OAuthEndpoints:
    """Return the register/authorize/token endpoints declared by ``server_url``.

    Any failure to fetch or read the conformance statement yields empty
    endpoints, i.e. the server is treated as open.
    """
    transport = transport or RequestsTransport()
    out = OAuthEndpoints()
    url = metadata_url(server_url)
    try:
        resp = transport.request('GET', url, headers={'Accept': 'application/fhir+json, application/json'})
    except TransportError as e:
        logger.warning('Could not fetch %s (%s); assuming an open server', url, e)
        return out
    if not resp.ok or not isinstance(resp.body, dict):
        logger.warning('Unusable conformance statement at %s (status %s); assuming an open server', url, resp.status_code)
        return out

    security = get_path(resp.body, 'rest.0.security.extension') or []
    oauth = next((e.get('extension') for e in security
                  if isinstance(e, dict) and e.get('url') == OAUTH_URIS_EXTENSION), None)
    for ext in oauth or []:
        if not isinstance(ext, dict):
            continue
        name, value = ext.get('url'), ext.get('valueUri') or ''
        if name == 'register':
            out.registration_uri = value
        elif name == 'authorize':
            out.authorize_uri = value
        elif name == 'token':
            out.token_uri = value
    logger.debug('Security extensions for %s: %s', server_url, out)
    return out
