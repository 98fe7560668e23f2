"""Error catalog and exception types for the SMART launch flow."""
from __future__ import annotations
from typing import Any, Optional

ERRORS = {
    '': 'Unknown error',
    'unknown_error': 'Unknown error',
    'missing_url_parameter': 'Missing url parameter "%s"',
    'missing_state_by_id': 'No state found using the given id: "%s".',
    'missing_state_redirect_uri': 'Missing state.redirect_uri',
    'missing_state_token_uri': 'Missing state.token_uri',
    'missing_state_client_id': 'Missing state.client_id',
    'missing_client_id': 'Missing client id. Set SMART_CLIENT_ID or pass client_id explicitly.',
    'missing_launch_id': 'This client was not created from a stored launch and cannot be saved',
    'no_fhir_response': 'No response received from the FHIR server',
    'invalid_token_response': 'The token endpoint did not return a JSON object',
    'no_refresh_token': 'Trying to refresh but there is no refresh token',
    'no_server_url_provided': (
        "Cannot detect which FHIR server to launch against. "
        "For EHR launch call your endpoint with 'launch' "
        "and 'iss' parameters. For standalone launch pass "
        "'fhirServiceUrl' parameter or set it as 'serverUrl' "
        "in your configuration."
    ),
}


def printf(s: str, *args: Any) -> str:
    """Replace each ``%s`` in ``s`` with the next argument (or '' once they run out)."""
    values = iter(args)
    out = []
    parts = str(s or '').split('%s')
    for i, part in enumerate(parts):
        if i:
            out.append(str(next(values, '')))
        out.append(part)
    return ''.join(out)


def error_text(name: str = '', *args: Any) -> str:
    return printf(ERRORS.get(name or '', ERRORS['unknown_error']), *args)


class SmartError(RuntimeError):
    """Base error. ``http_code`` is what a hosting app should answer with."""
    http_code = 500

    def __init__(self, message: str = '', http_code: Optional[int] = None, body: Any = None):
        super().__init__(message or error_text('unknown_error'))
        if http_code is not None:
            self.http_code = http_code
        self.body = body

    @classmethod
    def from_catalog(cls, name: str, *args: Any, http_code: Optional[int] = None):
        return cls(error_text(name, *args), http_code=http_code)


class ConfigurationError(SmartError):
    http_code = 400


class StateLookupError(SmartError):
    http_code = 400


class UpstreamAuthError(SmartError):
    pass


class RefreshTokenExpired(UpstreamAuthError):
    http_code = 401


class MissingRefreshToken(SmartError):
    http_code = 401


class UpstreamResourceError(SmartError):
    pass


class TransportError(SmartError):
    http_code = 502
