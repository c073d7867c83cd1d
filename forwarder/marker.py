# FILE: forwarder/marker.py
from __future__ import annotations
import logging
from typing import Optional
from psycopg import sql
from .db import ConnectionProvider, store_errors
from .errors import MarkingError
from .settings import Settings

logger = logging.getLogger("forwarder.marker")


class DeliveryMarker:
    def __init__(self, db: ConnectionProvider):
        self._db = db

    def mark_sent(self, row_id: int, s: Optional[Settings] = None) -> bool:
        """Flip Sent false -> true. False means the row was already sent or does not exist."""
        s = self._db.snapshot(s)
        q = sql.SQL("UPDATE {table} SET {sent} = true WHERE {id} = %s AND {sent} = false").format(
            table=self._db.item_log_table(s), sent=sql.Identifier("Sent"), id=sql.Identifier("ID"))
        with store_errors(MarkingError, "mark sent", row_id=row_id):
            with self._db.open(s) as conn:
                cur = conn.execute(q, (row_id,))
                rows = cur.rowcount
        logger.debug("mark sent affected %s rows", rows, extra={"row_id": row_id})
        return rows == 1
