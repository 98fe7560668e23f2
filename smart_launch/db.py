"""PostgreSQL-backed session storage (meta.smart_session_state)."""
from __future__ import annotations
import os, logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any
import psycopg2
from psycopg2.extras import Json
from dotenv import load_dotenv
from .storage import Storage

logger = logging.getLogger(__name__)
load_dotenv(dotenv_path=Path('.') / '.env', override=False)

DB_HOST = os.getenv('DB_HOST', 'localhost')
DB_PORT = int(os.getenv('DB_PORT', '5432'))
DB_USER = os.getenv('DB_USER', 'smart')
DB_PASSWORD = os.getenv('DB_PASSWORD', 'smart_password')
DB_NAME = os.getenv('DB_NAME', 'smart_launch')

DSN = f"host={DB_HOST} port={DB_PORT} dbname={DB_NAME} user={DB_USER} password={DB_PASSWORD}"

SCHEMA_FILE = Path('schema.sql')


@contextmanager
def get_conn():
    conn = psycopg2.connect(DSN)
    try:
        yield conn
    finally:
        conn.close()


def run_schema(schema_path: Path = SCHEMA_FILE):
    sql_text = schema_path.read_text(encoding='utf-8')
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(sql_text)
        conn.commit()


class PostgresStorage(Storage):
    """One row per (session_id, key); values are stored as JSONB."""

    def __init__(self, session_id: str):
        self.session_id = session_id

    def get(self, key: str) -> Any:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute('SELECT value FROM meta.smart_session_state WHERE session_id=%s AND key=%s',
                            (self.session_id, key))
                row = cur.fetchone()
        return row[0] if row else None

    def set(self, key: str, value: Any) -> Any:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    '''INSERT INTO meta.smart_session_state (session_id, key, value, updated_at)
                       VALUES (%s,%s,%s,NOW())
                       ON CONFLICT (session_id, key) DO UPDATE SET value=EXCLUDED.value, updated_at=NOW()''',
                    (self.session_id, key, Json(value))
                )
            conn.commit()
        return value

    def unset(self, key: str) -> bool:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute('DELETE FROM meta.smart_session_state WHERE session_id=%s AND key=%s',
                            (self.session_id, key))
                deleted = cur.rowcount > 0
            conn.commit()
        return deleted

    def clear(self) -> int:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute('DELETE FROM meta.smart_session_state WHERE session_id=%s', (self.session_id,))
                n = cur.rowcount
            conn.commit()
        logger.info('Cleared %s stored key(s) for session %s', n, self.session_id)
        return n
