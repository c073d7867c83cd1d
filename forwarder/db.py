# FILE: forwarder/db.py
from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Iterator, Optional
import psycopg
from psycopg import sql
from .errors import StoreConnectionError
from .settings import Settings, SettingsCell, describe

logger = logging.getLogger("forwarder.db")


class ConnectionProvider:
    """Opens one connection per operation.

    Every method takes an optional settings snapshot so one cycle can pin its
    connection target and table names; without one the cell's current value is used.
    """

    def __init__(self, cell: SettingsCell):
        self._cell = cell

    def snapshot(self, s: Optional[Settings] = None) -> Settings:
        return s if s is not None else self._cell.current

    @contextmanager
    def open(self, s: Optional[Settings] = None) -> Iterator[psycopg.Connection]:
        s = self.snapshot(s)
        try:
            conn = psycopg.connect(s.conninfo(), connect_timeout=s.DB_CONNECT_TIMEOUT)
        except psycopg.OperationalError as e:
            raise StoreConnectionError(f"cannot connect to {describe(s)}: {e}") from e
        # commits on clean exit, rolls back on error, always closes
        with conn:
            yield conn

    def describe(self, s: Optional[Settings] = None) -> str:
        return describe(self.snapshot(s))

    def table(self, name: str, s: Optional[Settings] = None) -> sql.Composed:
        return sql.SQL(".").join([sql.Identifier(self.snapshot(s).DB_SCHEMA), sql.Identifier(name)])

    def item_log_table(self, s: Optional[Settings] = None) -> sql.Composed:
        s = self.snapshot(s)
        return self.table(s.ITEM_LOG_TABLE, s)

    def daily_stats_table(self, s: Optional[Settings] = None) -> sql.Composed:
        s = self.snapshot(s)
        return self.table(s.DAILY_STATS_TABLE, s)


def columns(names) -> sql.Composed:
    return sql.SQL(", ").join(sql.Identifier(n) for n in names)


@contextmanager
def store_errors(error_cls, what: str, row_id=None):
    """Map psycopg failures raised inside the block onto the forwarder taxonomy."""
    try:
        yield
    except StoreConnectionError:
        raise
    except psycopg.OperationalError as e:
        raise StoreConnectionError(f"{what}: connection lost: {e}", row_id=row_id) from e
    except psycopg.Error as e:
        raise error_cls(f"{what}: {e}", row_id=row_id) from e
