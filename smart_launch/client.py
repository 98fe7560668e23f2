"""Authorized FHIR client built from a completed (or open-server) launch."""
from __future__ import annotations
import logging
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union
import jwt
from .errors import (SmartError, MissingRefreshToken, RefreshTokenExpired, TransportError,
                     UpstreamAuthError, UpstreamResourceError, error_text)
from .lib import get_path, base64encode, join_url
from .state import LaunchState
from .storage import Storage
from .transport import Transport, TransportResponse, RequestsTransport

logger = logging.getLogger(__name__)


@dataclass
class RequestOptions:
    url: str = ''
    method: str = 'GET'
    headers: Optional[Dict[str, str]] = None
    params: Optional[Dict[str, Any]] = None
    data: Any = None
    json: Any = None


RequestTarget = Union[str, RequestOptions, Dict[str, Any]]


class Outcome(Enum):
    SUCCESS = 'success'
    OPERATION_OUTCOME = 'operation_outcome'
    HTTP_ERROR = 'http_error'


def classify(resp: TransportResponse) -> Outcome:
    if resp.ok:
        return Outcome.SUCCESS
    body = resp.body
    if isinstance(body, dict) and body.get('resourceType') == 'OperationOutcome' and body.get('issue'):
        return Outcome.OPERATION_OUTCOME
    return Outcome.HTTP_ERROR


def operation_outcome_message(outcome: Dict[str, Any]) -> str:
    lines = []
    for issue in outcome.get('issue') or []:
        parts = (issue.get('severity'), issue.get('code'), issue.get('diagnostics'))
        lines.append(' '.join(str(p) for p in parts if p is not None))
    return '\n'.join(lines)


def _as_options(target: RequestTarget) -> RequestOptions:
    if isinstance(target, RequestOptions):
        return target
    if isinstance(target, dict):
        known = {f.name for f in fields(RequestOptions)}
        unknown = sorted(set(target) - known)
        if unknown:
            logger.warning('Ignoring unsupported request options: %s', ', '.join(unknown))
        return RequestOptions(**{k: v for k, v in target.items() if k in known})
    return RequestOptions(url=target or '')


class Client:
    """Wraps one LaunchState.

    Requests are authorized with the current access token, a 401 triggers a
    single refresh-and-retry when a refresh token is available. Token changes
    made by ``refresh`` live in memory only until ``save`` is called.
    """

    def __init__(self, state: LaunchState, launch_id: Optional[str] = None,
                 transport: Optional[Transport] = None):
        # happens when the stored state was lost (e.g. memory storage and a restart)
        if state is None:
            raise SmartError('No state provided to the client')
        self.state = state
        self.launch_id = launch_id
        self.transport = transport or RequestsTransport()

    # -- requests -------------------------------------------------------

    def _send(self, options: RequestOptions) -> TransportResponse:
        url = join_url(self.state.server_url, options.url)
        headers = dict(options.headers or {})
        access_token = get_path(self.state.token_response, 'access_token')
        if access_token:
            headers['Authorization'] = f'Bearer {access_token}'
        try:
            return self.transport.request(options.method, url, headers=headers, params=options.params,
                                          data=options.data, json=options.json)
        except TransportError as e:
            logger.warning('No response from %s: %s', url, e)
            raise TransportError(error_text('no_fhir_response')) from e

    def request(self, target: RequestTarget = '') -> Any:
        """Perform a request relative to the server url and return the decoded body."""
        options = _as_options(target)
        resp = self._send(options)
        if resp.status_code == 401 and get_path(self.state.token_response, 'refresh_token'):
            logger.debug('401 received; refreshing the access token and retrying once')
            self.refresh()
            resp = self._send(options)

        outcome = classify(resp)
        if outcome is Outcome.SUCCESS:
            return resp.body
        if outcome is Outcome.OPERATION_OUTCOME:
            logger.debug('OperationOutcome error response detected')
            raise UpstreamResourceError(operation_outcome_message(resp.body), http_code=resp.status_code,
                                        body=resp.body)
        raise UpstreamResourceError(f'Request failed with status code {resp.status_code}',
                                    http_code=resp.status_code, body=resp.body)

    def refresh(self) -> Dict[str, Any]:
        """Use the refresh token to get a new access token.

        The response is merged into the current token response. A 401 means
        the refresh token is no longer usable, so it is dropped from the state
        before the error is raised.
        """
        refresh_token = get_path(self.state.token_response, 'refresh_token')
        if not refresh_token:
            raise MissingRefreshToken.from_catalog('no_refresh_token')

        headers = {'Content-Type': 'application/x-www-form-urlencoded'}
        if self.state.client_secret:
            headers['Authorization'] = 'Basic ' + base64encode(f'{self.state.client_id}:{self.state.client_secret}')
        data = {'grant_type': 'refresh_token', 'refresh_token': refresh_token}

        logger.debug('Refreshing the access token at %s', self.state.token_uri)
        resp = self.transport.request('POST', self.state.token_uri, headers=headers, data=data)
        if resp.status_code == 401:
            logger.warning('Refresh token expired or invalid; discarding it')
            self.state.token_response.pop('refresh_token', None)
            raise RefreshTokenExpired('Refresh failed with status code 401', body=resp.body)
        if not resp.ok:
            raise UpstreamAuthError(f'Refresh failed with status code {resp.status_code}',
                                    http_code=resp.status_code, body=resp.body)
        if not isinstance(resp.body, dict):
            raise UpstreamAuthError(error_text('invalid_token_response'), http_code=502, body=resp.body)

        # some servers omit unchanged fields (e.g. patient) on refresh
        self.state.token_response = {**self.state.token_response, **resp.body}
        return resp.body

    def iter_pages(self, target: RequestTarget, max_pages: int = 100) -> Iterable[Dict[str, Any]]:
        """Yield bundles, following ``next`` links for at most ``max_pages`` pages.

        Later pages reuse the first request's method and headers; the
        ``next`` link already carries the query, so ``params`` are dropped.
        """
        options = _as_options(target)
        while options.url and max_pages > 0:
            bundle = self.request(options) or {}
            max_pages -= 1
            yield bundle
            next_url = next((link.get('url') for link in bundle.get('link') or []
                             if link.get('relation') == 'next'), None)
            options = replace(options, url=next_url or '', params=None)

    def get_pages(self, target: RequestTarget, max_pages: int = 100) -> List[Dict[str, Any]]:
        entries: List[Dict[str, Any]] = []
        for bundle in self.iter_pages(target, max_pages):
            entries.extend(bundle.get('entry') or [])
        return entries

    def save(self, storage: Storage) -> Dict[str, Any]:
        """Write the current state (e.g. after a refresh) back to ``storage``."""
        if not self.launch_id:
            raise SmartError(error_text('missing_launch_id'))
        return storage.set(self.launch_id, self.state.to_dict())

    # -- launch context -------------------------------------------------

    def _token(self, name: str) -> Any:
        return get_path(self.state.token_response, name)

    def _missing(self, name: str, scopes: str) -> None:
        if not self.state.token_response:
            logger.debug('%s is not available: the app is not authorized yet or the server is open', name)
        else:
            logger.debug('%s is not available: it was not returned by the server (requested scopes '
                         'should include %s)', name, scopes)

    def get_patient_id(self) -> Optional[str]:
        patient = self._token('patient')
        if not patient:
            self._missing('patient', '"launch" or "launch/patient"')
        return patient

    def get_encounter_id(self) -> Optional[str]:
        encounter = self._token('encounter')
        if not encounter:
            self._missing('encounter', '"launch" or "launch/encounter"')
        return encounter

    def get_id_token(self) -> Optional[Dict[str, Any]]:
        id_token = self._token('id_token')
        if not id_token or not isinstance(id_token, str):
            self._missing('id_token', '"openid" and "profile" (or "fhirUser")')
            return None
        try:
            return jwt.decode(id_token, options={'verify_signature': False})
        except jwt.PyJWTError as e:
            logger.warning('Could not decode id_token: %s', e)
            return None

    def get_user_profile(self) -> Optional[str]:
        return get_path(self.get_id_token(), 'profile')

    def _profile_part(self, index: int) -> Optional[str]:
        profile = self.get_user_profile()
        if not profile or not isinstance(profile, str):
            return None
        parts = profile.split('/')
        return parts[index] if len(parts) > index else None

    def get_user_id(self) -> Optional[str]:
        return self._profile_part(1)

    def get_user_type(self) -> Optional[str]:
        return self._profile_part(0)

    def need_patient_banner(self) -> Optional[bool]:
        return self._token('need_patient_banner')

    def smart_style_url(self) -> Optional[str]:
        return self._token('smart_style_url')
