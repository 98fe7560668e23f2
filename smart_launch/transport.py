"""HTTP transport used to reach the FHIR server and its authorization server."""
from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import requests
from .config import HTTP_TIMEOUT
from .errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    status_code: int
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class Transport(ABC):
    """Anything able to perform an HTTP request and hand back the response.

    Non-2xx responses are returned, not raised. ``TransportError`` is raised
    only when no response was received at all.
    """

    @abstractmethod
    def request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None,
                params: Optional[Dict[str, Any]] = None, data: Any = None,
                json: Any = None) -> TransportResponse:
        ...


class RequestsTransport(Transport):
    def __init__(self, session: Optional[requests.Session] = None, timeout: float = HTTP_TIMEOUT):
        self.session = session or requests.Session()
        self.timeout = timeout

    def request(self, method, url, headers=None, params=None, data=None, json=None) -> TransportResponse:
        logger.debug('%s %s', method, url)
        try:
            resp = self.session.request(method, url, headers=headers, params=params, data=data,
                                        json=json, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f'{method} {url} failed: {e}') from e
        return TransportResponse(status_code=resp.status_code, body=_decode_body(resp), headers=dict(resp.headers))


def _decode_body(resp: requests.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text
