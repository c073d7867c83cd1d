# FILE: tests/conftest.py
# Common fixtures: settings snapshots on tmp dirs, ephemeral Postgres via testcontainers, schema init.
import psycopg
import pytest
from pathlib import Path
from forwarder.db import ConnectionProvider
from forwarder.settings import Settings, SettingsCell

ROOT = Path(__file__).resolve().parents[1]

def _normalize_pg_url(url: str) -> str:
    # Normalize DSN if provider returns a driver suffix.
    return url.replace("+psycopg2", "").replace("+psycopg", "")

def make_cell(tmp_path: Path, **overrides) -> SettingsCell:
    values = {"CSV_OUTPUT_FOLDER": str(tmp_path / "out"), "INTERVAL_MS": 10}
    values.update(overrides)
    return SettingsCell(initial=Settings(_env_file=None, **values), env_file=str(tmp_path / "absent.env"))

@pytest.fixture()
def cell(tmp_path):
    """Settings cell writing into tmp_path/out with no replica."""
    return make_cell(tmp_path)

@pytest.fixture()
def cell_factory(tmp_path):
    """Build a settings cell on tmp_path with extra overrides."""
    return lambda **overrides: make_cell(tmp_path, **overrides)

@pytest.fixture(scope="session")
def pg():
    """Start ephemeral Postgres and yield (dsn, container)."""
    try:
        from testcontainers.postgres import PostgresContainer
        pgc = PostgresContainer("postgres:16").with_env("POSTGRES_DB", "tracesol")
        pgc.start()
    except Exception as e:
        pytest.skip(f"postgres container unavailable: {e}")
    try:
        yield _normalize_pg_url(pgc.get_connection_url()), pgc
    finally:
        pgc.stop()

@pytest.fixture(scope="session")
def init_db(pg):
    """Apply SQL schema from forwarder/sql/001_init.sql."""
    url, _ = pg
    sql_file = ROOT / "forwarder" / "sql" / "001_init.sql"
    with psycopg.connect(url) as conn, conn.cursor() as cur:
        cur.execute(sql_file.read_text())
        conn.commit()
    return url

@pytest.fixture()
def pg_url(init_db):
    """DSN of a freshly emptied store."""
    with psycopg.connect(init_db) as conn:
        conn.execute('TRUNCATE "Records", "DailyStats" RESTART IDENTITY')
    return init_db

@pytest.fixture()
def pg_cell(pg_url, tmp_path):
    return make_cell(tmp_path, DATABASE_URL=pg_url)

@pytest.fixture()
def provider(pg_cell):
    return ConnectionProvider(pg_cell)

@pytest.fixture()
def insert_row(pg_url):
    """Insert one item log row; returns its ID."""
    def _insert(**cols) -> int:
        names = ", ".join(f'"{k}"' for k in cols)
        marks = ", ".join(["%s"] * len(cols))
        with psycopg.connect(pg_url) as conn:
            row = conn.execute(f'INSERT INTO "Records" ({names}) VALUES ({marks}) RETURNING "ID"',
                               tuple(cols.values())).fetchone()
        return row[0]
    return _insert

@pytest.fixture()
def fetch_sent(pg_url):
    def _fetch(row_id: int) -> bool:
        with psycopg.connect(pg_url) as conn:
            return conn.execute('SELECT "Sent" FROM "Records" WHERE "ID" = %s', (row_id,)).fetchone()[0]
    return _fetch
