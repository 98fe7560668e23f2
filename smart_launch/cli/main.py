"""SMART launch CLI.

Operational flow:
    1. bootstrap      -> apply schema.sql (idempotent), only needed for --store db
    2. discover URL   -> show the OAuth endpoints a FHIR server declares
    3. launch         -> run a loopback server, authorize in the browser, store tokens
    4. request/pages  -> call the FHIR server with the stored session
"""
from __future__ import annotations
import json, logging, threading, time, webbrowser
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlsplit
import click
from smart_launch.auth import LaunchRequest, build_authorize_url, complete_auth, get_client
from smart_launch.config import load_options
from smart_launch.db import PostgresStorage, run_schema
from smart_launch.discovery import discover
from smart_launch.errors import SmartError
from smart_launch.storage import MemoryStorage
from smart_launch.transport import RequestsTransport

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8765
DEFAULT_SESSION = 'cli'


def _open_storage(kind: str, session: str):
    if kind == 'db':
        return PostgresStorage(session)
    return MemoryStorage()


def _stored_client(ctx, session: str):
    storage = _open_storage('db', session)
    client = get_client(storage, ctx.obj['transport'])
    if client is None:
        raise click.ClickException('No active launch for this session. Run `smart launch --store db` first.')
    return storage, client


def _echo_context(client):
    click.echo(f'Server:    {client.state.server_url}')
    click.echo(f'Patient:   {client.get_patient_id() or "-"}')
    click.echo(f'Encounter: {client.get_encounter_id() or "-"}')
    user_type, user_id = client.get_user_type(), client.get_user_id()
    click.echo(f'User:      {f"{user_type}/{user_id}" if user_type else "-"}')
    click.echo(f'Scope:     {(client.state.token_response or {}).get("scope") or client.state.scope or "-"}')


def run_loopback(options, storage, transport, port: int, launch_url: Optional[str], timeout: float = 300):
    """Serve /launch and the redirect uri on localhost until a launch completes."""
    callback_path = urlsplit(options.redirect_uri).path or '/callback'
    holder: dict = {}

    class Handler(BaseHTTPRequestHandler):
        def _reply(self_inner, status: int, text: str, location: Optional[str] = None):
            self_inner.send_response(status)
            if location:
                self_inner.send_header('Location', location)
            self_inner.send_header('Content-Type', 'text/plain; charset=utf-8')
            self_inner.end_headers()
            self_inner.wfile.write(text.encode('utf-8'))

        def do_GET(self_inner):  # noqa: N802
            request = LaunchRequest(url=self_inner.path, scheme='http',
                                    host=self_inner.headers.get('Host', f'localhost:{port}'))
            path = urlsplit(self_inner.path).path
            try:
                if path == '/launch':
                    self_inner._reply(303, 'Redirecting...', location=build_authorize_url(request, options, storage, transport))
                elif path == callback_path:
                    query = request.query
                    if query.get('code') or query.get('state') or query.get('error'):
                        holder['client'] = complete_auth(request, storage, transport)
                    else:
                        # open server: no authorization round trip happened
                        holder['client'] = get_client(storage, transport)
                    self_inner._reply(200, 'Launch complete. You can close this window.')
                else:
                    self_inner._reply(404, 'Not found')
            except SmartError as e:
                holder['error'] = e
                self_inner._reply(e.http_code, str(e))

        def log_message(self_inner, format, *args):  # noqa: A003
            return

    server = HTTPServer(('localhost', port), Handler)
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    try:
        if launch_url:
            logger.info('Open this URL if the browser does not open automatically:\n%s', launch_url)
            webbrowser.open(launch_url)
        else:
            logger.info('Waiting for an EHR launch at http://localhost:%s/launch', port)
        deadline = time.time() + timeout
        while 'client' not in holder and 'error' not in holder and time.time() < deadline:
            time.sleep(0.2)
    finally:
        server.shutdown()
    if 'error' in holder:
        raise holder['error']
    if 'client' not in holder:
        raise click.ClickException('Launch did not complete in time.')
    return holder['client']


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Debug logging.')
@click.pass_context
def cli(ctx, verbose: bool):
    """SMART on FHIR launch CLI."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format='[%(asctime)s] %(levelname)s %(message)s')
    ctx.ensure_object(dict)
    ctx.obj.setdefault('transport', RequestsTransport())


@cli.command()
@click.option('--schema', 'schema_path', default='schema.sql', show_default=True, help='Schema file to apply.')
def bootstrap(schema_path: str):
    """Apply schema.sql directly (idempotent bootstrap)."""
    path = Path(schema_path)
    if not path.exists():
        raise click.ClickException(f'{schema_path} not found.')
    run_schema(path)
    click.echo('Bootstrap complete: meta.smart_session_state ensured.')


@cli.command('discover')
@click.argument('server_url')
@click.pass_context
def discover_cmd(ctx, server_url: str):
    """Show the OAuth endpoints declared by SERVER_URL."""
    endpoints = discover(server_url, ctx.obj['transport'])
    if not endpoints.authorize_uri:
        click.echo(f'{server_url} declares no authorize endpoint (open server).')
    for name, value in endpoints.to_dict().items():
        click.echo(f'{name}: {value or "-"}')


@cli.command()
@click.option('--server-url', help='FHIR server for a standalone launch (default SMART_SERVER_URL).')
@click.option('--port', type=int, default=DEFAULT_PORT, show_default=True)
@click.option('--no-browser', is_flag=True, help='Do not open a browser; wait for an EHR launch instead.')
@click.option('--store', type=click.Choice(['memory', 'db']), default='memory', show_default=True)
@click.option('--session', default=DEFAULT_SESSION, show_default=True, help='Session id for --store db.')
@click.option('--timeout', type=float, default=300, show_default=True, help='Seconds to wait for the launch.')
@click.pass_context
def launch(ctx, server_url: Optional[str], port: int, no_browser: bool, store: str, session: str, timeout: float):
    """Launch the app and complete authorization in the browser."""
    try:
        options = load_options(server_url=server_url)
    except SmartError as e:
        raise click.ClickException(str(e))
    launch_url = None
    if not no_browser:
        launch_url = f'http://localhost:{port}/launch'
        if server_url:
            launch_url += '?fhirServiceUrl=' + quote(server_url, safe='')
    storage = _open_storage(store, session)
    try:
        client = run_loopback(options, storage, ctx.obj['transport'], port, launch_url, timeout)
    except SmartError as e:
        raise click.ClickException(str(e))
    if client is None:
        raise click.ClickException('Launch state was lost before the callback arrived.')
    _echo_context(client)


@cli.command()
@click.argument('path')
@click.option('--session', default=DEFAULT_SESSION, show_default=True)
@click.pass_context
def request(ctx, path: str, session: str):
    """GET PATH (relative to the server) with the stored session."""
    storage, client = _stored_client(ctx, session)
    try:
        data = client.request(path)
    except SmartError as e:
        raise click.ClickException(str(e))
    finally:
        # keep any refreshed tokens
        client.save(storage)
    click.echo(json.dumps(data, indent=2))


@cli.command()
@click.argument('path')
@click.option('--max-pages', type=int, default=100, show_default=True)
@click.option('--session', default=DEFAULT_SESSION, show_default=True)
@click.option('--json', 'as_json', is_flag=True, help='Print the entries as JSON.')
@click.pass_context
def pages(ctx, path: str, max_pages: int, session: str, as_json: bool):
    """Collect bundle entries for PATH, following next links."""
    storage, client = _stored_client(ctx, session)
    try:
        entries = client.get_pages(path, max_pages=max_pages)
    except SmartError as e:
        raise click.ClickException(str(e))
    finally:
        client.save(storage)
    if as_json:
        click.echo(json.dumps(entries, indent=2))
        return
    for entry in entries:
        res = entry.get('resource') or {}
        click.echo(f"{res.get('resourceType', '?')}/{res.get('id', '?')}")
    click.echo(f'{len(entries)} entr{"y" if len(entries) == 1 else "ies"}')


@cli.command()
@click.option('--session', default=DEFAULT_SESSION, show_default=True)
def context(session: str):
    """Show the launch context of the stored session."""
    client = get_client(_open_storage('db', session))
    if client is None:
        raise click.ClickException('No active launch for this session.')
    _echo_context(client)


@cli.command()
@click.option('--session', default=DEFAULT_SESSION, show_default=True)
def forget(session: str):
    """Delete all stored launch state for the session."""
    n = PostgresStorage(session).clear()
    click.echo(f'Removed {n} stored key(s).')


def main():
    cli()


if __name__ == '__main__':
    main()
