# FILE: forwarder/selector.py
from __future__ import annotations
import logging
from typing import Optional
from psycopg import sql
from psycopg.rows import dict_row
from .db import ConnectionProvider, columns, store_errors
from .errors import SelectionError
from .models import ITEM_LOG_COLUMNS, ItemLogRow
from .settings import Settings

logger = logging.getLogger("forwarder.selector")


class RowSelector:
    def __init__(self, db: ConnectionProvider):
        self._db = db

    def select_oldest_unsent(self, s: Optional[Settings] = None) -> Optional[ItemLogRow]:
        """Oldest row with Sent = false, reading past rows another transaction holds locked.

        FOR SHARE is released when the connection block commits, so nothing stays locked.
        """
        s = self._db.snapshot(s)
        q = sql.SQL(
            "SELECT {cols} FROM {table} WHERE {sent} = false "
            "ORDER BY {id} ASC LIMIT 1 FOR SHARE SKIP LOCKED"
        ).format(cols=columns(ITEM_LOG_COLUMNS), table=self._db.item_log_table(s),
                 sent=sql.Identifier("Sent"), id=sql.Identifier("ID"))
        with store_errors(SelectionError, "select oldest unsent"):
            with self._db.open(s) as conn:
                logger.debug("executing sql", extra={"sql": q.as_string(conn)})
                with conn.cursor(row_factory=dict_row) as cur:
                    r = cur.execute(q).fetchone()
        if r is None:
            return None
        try:
            return ItemLogRow.model_validate(r)
        except ValueError as e:
            raise SelectionError(f"row does not match item log model: {e}", row_id=r.get("ID")) from e

    def oldest_unsent_id(self, s: Optional[Settings] = None) -> Optional[int]:
        """Oldest unsent id regardless of row locks; compared with the selection to spot stalled rows."""
        s = self._db.snapshot(s)
        q = sql.SQL("SELECT min({id}) FROM {table} WHERE {sent} = false").format(
            id=sql.Identifier("ID"), table=self._db.item_log_table(s), sent=sql.Identifier("Sent"))
        with store_errors(SelectionError, "oldest unsent id"):
            with self._db.open(s) as conn:
                row = conn.execute(q).fetchone()
        return row[0] if row else None
