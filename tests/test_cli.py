import json, socket, threading, time
from urllib.parse import parse_qs, urlsplit
import pytest
import requests
from click.testing import CliRunner
from smart_launch.cli import main as cli_main
from smart_launch.config import ClientOptions
from smart_launch.errors import StateLookupError
from smart_launch.state import LaunchState
from smart_launch.storage import MemoryStorage, SMART_ID_KEY
from conftest import FakeTransport, ok, conformance, id_token, SERVER, TOKEN, AUTHORIZE


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def session_storage(monkeypatch):
    storage = MemoryStorage()
    monkeypatch.setattr(cli_main, '_open_storage', lambda kind, session: storage)
    return storage


def authorized(storage, **tokens):
    token_response = {'access_token': 'at-1', 'refresh_token': 'rt-1', 'patient': 'p-1', **tokens}
    state = LaunchState(server_url=SERVER, client_id='app', redirect_uri='http://localhost:8765/callback',
                        token_uri=TOKEN, authorize_uri=AUTHORIZE, token_response=token_response)
    storage.set('smart-1', state.to_dict())
    storage.set(SMART_ID_KEY, 'smart-1')


def test_discover(runner):
    t = FakeTransport(ok(conformance()))
    result = runner.invoke(cli_main.cli, ['discover', SERVER], obj={'transport': t})
    assert result.exit_code == 0, result.output
    assert f'authorize_uri: {AUTHORIZE}' in result.output
    assert 'registration_uri: -' in result.output


def test_discover_open_server(runner):
    t = FakeTransport(ok({'resourceType': 'CapabilityStatement'}))
    result = runner.invoke(cli_main.cli, ['discover', SERVER], obj={'transport': t})
    assert result.exit_code == 0
    assert 'open server' in result.output


def test_request_without_launch(runner, session_storage):
    result = runner.invoke(cli_main.cli, ['request', 'Patient/p-1'], obj={'transport': FakeTransport()})
    assert result.exit_code != 0
    assert 'No active launch' in result.output


def test_request_saves_refreshed_tokens(runner, session_storage):
    authorized(session_storage)
    t = FakeTransport(ok(None, status=401), ok({'access_token': 'at-2'}), ok({'resourceType': 'Patient', 'id': 'p-1'}))
    result = runner.invoke(cli_main.cli, ['request', 'Patient/p-1'], obj={'transport': t})
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)['id'] == 'p-1'
    assert session_storage.get('smart-1')['token_response']['access_token'] == 'at-2'


def test_request_error(runner, session_storage):
    authorized(session_storage)
    outcome = {'resourceType': 'OperationOutcome', 'issue': [{'severity': 'error', 'code': 'not-found',
                                                               'diagnostics': 'Unknown'}]}
    t = FakeTransport(ok(outcome, status=404))
    result = runner.invoke(cli_main.cli, ['request', 'Patient/x'], obj={'transport': t})
    assert result.exit_code == 1
    assert 'error not-found Unknown' in result.output


def test_pages(runner, session_storage):
    authorized(session_storage)
    page1 = {'resourceType': 'Bundle', 'link': [{'relation': 'next', 'url': SERVER + '?page=2'}],
             'entry': [{'resource': {'resourceType': 'Observation', 'id': 'o1'}}]}
    page2 = {'resourceType': 'Bundle', 'entry': [{'resource': {'resourceType': 'Observation', 'id': 'o2'}}]}
    t = FakeTransport(ok(page1), ok(page2))
    result = runner.invoke(cli_main.cli, ['pages', 'Observation?patient=p-1'], obj={'transport': t})
    assert result.exit_code == 0, result.output
    assert 'Observation/o1' in result.output
    assert 'Observation/o2' in result.output
    assert '2 entries' in result.output


def test_context(runner, session_storage):
    authorized(session_storage, id_token=id_token(profile='Practitioner/abc'))
    result = runner.invoke(cli_main.cli, ['context'])
    assert result.exit_code == 0, result.output
    assert 'Patient:   p-1' in result.output
    assert 'User:      Practitioner/abc' in result.output


def test_launch_requires_client_id(runner, monkeypatch):
    monkeypatch.delenv('SMART_CLIENT_ID', raising=False)
    result = runner.invoke(cli_main.cli, ['launch', '--no-browser'], obj={'transport': FakeTransport()})
    assert result.exit_code == 1
    assert 'Missing client id' in result.output


def free_port():
    with socket.socket() as s:
        s.bind(('localhost', 0))
        return s.getsockname()[1]


class Loopback:
    """Runs run_loopback in a thread and talks to it over real HTTP."""

    def __init__(self, transport, storage, **options):
        self.port = free_port()
        self.base = f'http://localhost:{self.port}'
        self.storage = storage
        self.result = {}
        opts = ClientOptions(client_id='app', server_url=SERVER, **options)
        self.thread = threading.Thread(target=self._run, args=(opts, transport), daemon=True)
        self.thread.start()
        self._wait_until_up()

    def _run(self, options, transport):
        try:
            self.result['client'] = cli_main.run_loopback(options, self.storage, transport, self.port,
                                                          None, timeout=10)
        except Exception as e:
            self.result['error'] = e

    def _wait_until_up(self):
        deadline = time.time() + 5
        while time.time() < deadline:
            try:
                requests.get(self.base + '/up', timeout=1)
                return
            except requests.ConnectionError:
                time.sleep(0.05)
        raise AssertionError('loopback server did not start')

    def get(self, path):
        return requests.get(self.base + path, allow_redirects=False, timeout=5)

    def finish(self):
        self.thread.join(timeout=10)
        assert not self.thread.is_alive()
        return self.result


def test_loopback_protected_server(storage):
    t = FakeTransport(ok(conformance()), ok({'access_token': 'at-1', 'patient': 'p-1'}))
    loop = Loopback(t, storage)
    assert loop.get('/nope').status_code == 404

    resp = loop.get('/launch')
    assert resp.status_code == 303
    location = resp.headers['Location']
    assert location.startswith(AUTHORIZE + '?')
    query = parse_qs(urlsplit(location).query)
    assert query['redirect_uri'] == [loop.base + '/callback']
    state_id = query['state'][0]

    resp = loop.get(f'/callback?code=abc&state={state_id}')
    assert resp.status_code == 200
    result = loop.finish()
    client = result['client']
    assert client.get_patient_id() == 'p-1'
    assert client.launch_id == state_id
    assert storage.get(SMART_ID_KEY) == state_id
    assert storage.get(state_id)['token_response']['access_token'] == 'at-1'
    assert t.calls[1]['url'] == TOKEN
    assert t.calls[1]['data']['code'] == 'abc'


def test_loopback_open_server(storage):
    t = FakeTransport(ok({'resourceType': 'CapabilityStatement'}))
    loop = Loopback(t, storage)
    resp = loop.get('/launch')
    assert resp.status_code == 303
    assert resp.headers['Location'] == loop.base + '/callback'

    assert loop.get('/callback').status_code == 200
    client = loop.finish()['client']
    assert client.state.server_url == SERVER
    assert client.state.token_response is None
    assert client.launch_id == storage.get(SMART_ID_KEY)
    assert len(t.calls) == 1


def test_loopback_unknown_state(storage):
    loop = Loopback(FakeTransport(), storage)
    resp = loop.get('/callback?code=abc&state=smart-unknown')
    assert resp.status_code == 400
    assert isinstance(loop.finish()['error'], StateLookupError)
