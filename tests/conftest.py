"""Shared fixtures: a scripted transport and in-memory storage."""
from __future__ import annotations
import jwt
import pytest
from smart_launch.storage import MemoryStorage
from smart_launch.transport import Transport, TransportResponse
from smart_launch.discovery import OAUTH_URIS_EXTENSION

SERVER = 'https://ehr.example.org/fhir'
AUTHORIZE = 'https://ehr.example.org/auth/authorize'
TOKEN = 'https://ehr.example.org/auth/token'
REGISTER = 'https://ehr.example.org/auth/register'


class FakeTransport(Transport):
    """Replays queued responses in order and records every call."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def request(self, method, url, headers=None, params=None, data=None, json=None):
        self.calls.append({'method': method, 'url': url, 'headers': dict(headers or {}),
                           'params': params, 'data': data, 'json': json})
        if not self.responses:
            raise AssertionError(f'unexpected request {method} {url}')
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def ok(body=None, status=200):
    return TransportResponse(status_code=status, body=body)


def conformance(authorize=AUTHORIZE, token=TOKEN, register=None):
    uris = []
    if register:
        uris.append({'url': 'register', 'valueUri': register})
    if authorize:
        uris.append({'url': 'authorize', 'valueUri': authorize})
    if token:
        uris.append({'url': 'token', 'valueUri': token})
    return {
        'resourceType': 'CapabilityStatement',
        'rest': [{'security': {'extension': [
            {'url': 'http://example.org/other', 'valueString': 'x'},
            {'url': OAUTH_URIS_EXTENSION, 'extension': uris},
        ]}}],
    }


def id_token(**claims):
    return jwt.encode(claims, 'not-a-real-secret-just-for-tests-000000', algorithm='HS256')


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def storage():
    return MemoryStorage()
