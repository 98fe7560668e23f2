"""Small helpers shared by the authorization flow and the client."""
from __future__ import annotations
import base64, re, secrets
from typing import Any
from urllib.parse import urljoin

STATE_ID_PREFIX = 'smart-'
# a scheme at the very start; "code=http://..." in a query does not count
_ABSOLUTE_URL = re.compile(r'^[a-z][a-z\d+\-.]*://', re.IGNORECASE)


def get_path(obj: Any, path: str = '') -> Any:
    """Walk ``obj`` along a dot-separated path ("a.b.4.c").

    Dict keys and list indexes are both supported. Any missing step yields
    None instead of raising.
    """
    path = (path or '').strip()
    if not path:
        return obj
    out = obj
    for key in path.split('.'):
        if out is None:
            return None
        if isinstance(out, dict):
            out = out.get(key)
        elif isinstance(out, (list, tuple)):
            try:
                out = out[int(key)]
            except (ValueError, IndexError):
                return None
        else:
            out = getattr(out, key, None)
    return out


def base64encode(s: str) -> str:
    return base64.b64encode(s.encode('utf-8')).decode('ascii')


def resolve_url(scheme: str, host: str, url: str) -> str:
    """Make ``url`` absolute against ``scheme://host`` (absolute urls pass through)."""
    return urljoin(f'{scheme}://{host}', url)


def join_url(base: str, url: str) -> str:
    # absolute urls are left alone; everything else hangs off the base path
    if _ABSOLUTE_URL.match(url):
        return url
    return base.rstrip('/') + '/' + url.lstrip('/')


def make_state_id(nbytes: int = 8) -> str:
    return STATE_ID_PREFIX + secrets.token_hex(nbytes)
