"""SMART authorization flow: launch -> authorize redirect -> callback -> token."""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urlencode, urlsplit, parse_qs, quote
from .client import Client
from .config import ClientOptions
from .discovery import discover
from .errors import (ConfigurationError, StateLookupError, UpstreamAuthError, TransportError,
                     error_text)
from .lib import base64encode, resolve_url, make_state_id
from .state import LaunchState
from .storage import Storage, SMART_ID_KEY
from .transport import Transport, RequestsTransport

logger = logging.getLogger(__name__)


@dataclass
class LaunchRequest:
    """The parts of an inbound HTTP request the flow needs."""
    url: str
    scheme: str = 'http'
    host: str = 'localhost'

    @classmethod
    def from_url(cls, url: str) -> 'LaunchRequest':
        parts = urlsplit(url)
        path = parts.path or '/'
        if parts.query:
            path += '?' + parts.query
        return cls(url=path, scheme=parts.scheme or 'http', host=parts.netloc or 'localhost')

    @property
    def query(self) -> Dict[str, str]:
        return {k: v[0] for k, v in parse_qs(urlsplit(self.url).query).items()}

    def absolute(self, url: str) -> str:
        return resolve_url(self.scheme, self.host, url)


def _launch_server_url(query: Dict[str, str], options: ClientOptions) -> str:
    iss = query.get('iss')
    if iss and not query.get('launch'):
        raise ConfigurationError.from_catalog('missing_url_parameter', 'launch')
    server_url = iss or query.get('fhirServiceUrl') or options.server_url or ''
    if not server_url:
        logger.debug('No server url found in query.iss, query.fhirServiceUrl or options.server_url')
        raise ConfigurationError.from_catalog('no_server_url_provided')
    return server_url


def build_authorize_url(request: LaunchRequest, options: ClientOptions, storage: Storage,
                        transport: Optional[Transport] = None) -> str:
    """Start a launch and return the URL the browser should be redirected to.

    For open servers (no authorize endpoint declared) that is the redirect
    uri itself and no ``state`` is issued.
    """
    query = request.query
    server_url = _launch_server_url(query, options)
    launch = query.get('launch')

    logger.debug('Looking up the authorization endpoint for %s', server_url)
    endpoints = discover(server_url, transport)

    state = LaunchState.create(
        server_url=server_url,
        client_id=options.client_id,
        redirect_uri=request.absolute(options.redirect_uri),
        scope=options.scope,
        endpoints=endpoints,
        client_secret=options.client_secret,
    )

    state_id = make_state_id()
    old_id = storage.get(SMART_ID_KEY)
    if old_id:
        logger.debug('Deleting previous state %s', old_id)
        storage.unset(old_id)
    storage.set(state_id, state.to_dict())
    storage.set(SMART_ID_KEY, state_id)
    logger.debug('Saved new state %s', state_id)

    if state.is_open_server:
        logger.info('No authorize endpoint declared by %s; skipping authorization', server_url)
        return state.redirect_uri

    params = {
        'response_type': 'code',
        'client_id': state.client_id,
        'scope': state.scope,
        'redirect_uri': state.redirect_uri,
        'aud': state.server_url,
        'state': state_id,
    }
    if launch:
        params['launch'] = launch
    sep = '&' if '?' in state.authorize_uri else '?'
    url = state.authorize_uri + sep + urlencode(params, safe='', quote_via=quote)
    logger.debug('Authorize redirect to %s', url)
    return url


def _token_error_message(message: str, body) -> str:
    if isinstance(body, str) and body:
        return f'{message}\n{body}'
    if isinstance(body, dict) and body.get('error'):
        message += f"\n{body['error']}"
        if body.get('error_description'):
            message += f": {body['error_description']}"
    return message


def complete_auth(request: LaunchRequest, storage: Storage,
                  transport: Optional[Transport] = None) -> Client:
    """Exchange the callback's authorization code for tokens.

    The token response is saved into the stored launch state and a Client
    built from a copy of that state is returned.
    """
    query = request.query
    if query.get('error'):
        msg = query['error']
        if query.get('error_description'):
            msg += ':\n' + query['error_description']
        raise UpstreamAuthError(msg, http_code=400)
    for name in ('code', 'state'):
        if not query.get(name):
            raise ConfigurationError.from_catalog('missing_url_parameter', name)
    code, state_id = query['code'], query['state']

    cached = storage.get(state_id)
    if not cached:
        logger.debug('No state found by id %s', state_id)
        raise StateLookupError.from_catalog('missing_state_by_id', state_id)
    state = LaunchState.from_dict(cached)
    if not state.redirect_uri:
        raise ConfigurationError.from_catalog('missing_state_redirect_uri')
    if not state.token_uri:
        raise ConfigurationError.from_catalog('missing_state_token_uri')
    if not state.client_id:
        raise ConfigurationError.from_catalog('missing_state_client_id')

    headers = {'Content-Type': 'application/x-www-form-urlencoded'}
    data = {
        'grant_type': 'authorization_code',
        'code': code,
        'redirect_uri': state.redirect_uri,
    }
    # Confidential clients authenticate with HTTP Basic; public clients can
    # only identify themselves.
    if state.client_secret:
        headers['Authorization'] = 'Basic ' + base64encode(f'{state.client_id}:{state.client_secret}')
    else:
        data['client_id'] = state.client_id

    transport = transport or RequestsTransport()
    logger.debug('Exchanging the authorization code for an access token at %s', state.token_uri)
    try:
        resp = transport.request('POST', state.token_uri, headers=headers, data=data)
    except TransportError as e:
        raise UpstreamAuthError(str(e), http_code=e.http_code) from e
    if not resp.ok:
        msg = _token_error_message(f'Token request failed with status code {resp.status_code}', resp.body)
        raise UpstreamAuthError(msg, http_code=resp.status_code, body=resp.body)
    if not isinstance(resp.body, dict):
        raise UpstreamAuthError(error_text('invalid_token_response'), http_code=502, body=resp.body)

    state.token_response = resp.body
    stored = state.to_dict()
    storage.set(state_id, stored)
    logger.info('Authorization complete for %s', state.server_url)
    return Client(LaunchState.from_dict(stored), launch_id=state_id, transport=transport)


def get_client(storage: Storage, transport: Optional[Transport] = None) -> Optional[Client]:
    """Client for the session's active launch, or None if there is none."""
    state_id = storage.get(SMART_ID_KEY)
    if not state_id:
        return None
    cached = storage.get(state_id)
    if not cached:
        logger.debug('smartId points at missing state %s', state_id)
        return None
    return Client(LaunchState.from_dict(cached), launch_id=state_id, transport=transport)
