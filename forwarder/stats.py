# FILE: forwarder/stats.py
from __future__ import annotations
import logging
from datetime import date, datetime, time, timedelta
from typing import Optional
from psycopg import sql
from psycopg.rows import dict_row
from .db import ConnectionProvider, columns, store_errors
from .errors import AggregateRefreshError
from .models import STATS_COLUMNS, DailyStatsRow
from .settings import Settings

logger = logging.getLogger("forwarder.stats")

def _c(name: str) -> sql.Identifier:
    return sql.Identifier(name)

def _not_null(col): return sql.SQL("{} IS NOT NULL").format(_c(col))
def _is(col, v: bool): return sql.SQL("{} = {}").format(_c(col), sql.SQL("true" if v else "false"))
def _good_read(col): return sql.SQL("({0} IS NOT NULL AND {0} <> '')").format(_c(col))
def _no_read(col): return sql.SQL("({0} IS NULL OR {0} = '')").format(_c(col))

# counter column -> predicate over the item log; None counts every row of the day
COUNTERS = {
    "TotalScans": None,
    "SKU_Count": _not_null("SKU"),
    "Pallet_Count": _not_null("Pallet_Number"),
    "OCR_Description_1_Count": _not_null("OCR_Description_1"),
    "Quantity_Count": _not_null("Quantity"),
    "Batch_Number_Count": _not_null("Batch_Number"),
    "Barcode_Count": _not_null("Barcode"),
    "OCR_Description_2_Count": _not_null("OCR_Description_2"),
    "Cross_Check_Count": _is("Cross_Check", True),
    "Label_Printed_Count": _is("Label_Printed", True),
    "Label_Applied_Count": _is("Label_Applied", True),
    "Check_Scan_Result_Count": _not_null("Check_Scan_Result"),
    "Valid_Count": _is("Valid", True),
    "Sent_Count": _is("Sent", True),
    "ImageSent_Count": _is("ImageSent", True),
    "Duplicate_Count": _is("Duplicate", True),
    "Complete_Count": _is("Complete", True),
    "IC1_Good_Read_Count": _good_read("OCR_Description_1"),
    "IC1_No_Read_Count": _no_read("OCR_Description_1"),
    "IC2_Good_Read_Count": _good_read("OCR_Description_2"),
    "IC2_No_Read_Count": _no_read("OCR_Description_2"),
    "Cross_Check_Fail_Count": _is("Cross_Check", False),
    "CheckScan_Good_Read_Count": _good_read("Check_Scan_Result"),
    "CheckScan_No_Read_Count": _no_read("Check_Scan_Result"),
}
if tuple(COUNTERS) != STATS_COLUMNS:
    raise RuntimeError("daily stats counters are out of step with DailyStatsRow columns")


class AggregateRefresher:
    """Recomputes one day's counters from the item log and upserts them in a single statement."""

    def __init__(self, db: ConnectionProvider):
        self._db = db

    def _upsert(self, s: Optional[Settings] = None) -> sql.Composed:
        counts = []
        for col, pred in COUNTERS.items():
            agg = sql.SQL("count(*)") if pred is None else sql.SQL("count(*) FILTER (WHERE {})").format(pred)
            counts.append(sql.SQL("{} AS {}").format(agg, _c(col)))
        updates = sql.SQL(", ").join(
            sql.SQL("{0} = EXCLUDED.{0}").format(_c(col)) for col in STATS_COLUMNS)
        return sql.SQL(
            "INSERT INTO {stats} ({key}, {cols}) "
            "SELECT %(day)s::date, {counts} FROM {log} "
            "WHERE {ts} >= %(start)s AND {ts} < %(end)s "
            "ON CONFLICT ({key}) DO UPDATE SET {updates}"
        ).format(stats=self._db.daily_stats_table(s), key=_c("StatDate"), cols=columns(STATS_COLUMNS),
                 counts=sql.SQL(", ").join(counts), log=self._db.item_log_table(s),
                 ts=_c("DateTimeStamp"), updates=updates)

    def refresh(self, day: date, s: Optional[Settings] = None) -> int:
        s = self._db.snapshot(s)
        start = datetime.combine(day, time.min)
        params = {"day": day, "start": start, "end": start + timedelta(days=1)}
        q = self._upsert(s)
        logger.debug("refreshing daily stats", extra={"date": day.isoformat()})
        with store_errors(AggregateRefreshError, f"refresh daily stats {day}"):
            with self._db.open(s) as conn:
                rows = conn.execute(q, params).rowcount
        logger.info("daily stats updated", extra={"date": day.isoformat(), "rows": rows})
        return rows

    def fetch(self, day: date, s: Optional[Settings] = None) -> Optional[DailyStatsRow]:
        s = self._db.snapshot(s)
        q = sql.SQL("SELECT {key}, {cols} FROM {stats} WHERE {key} = %s").format(
            key=_c("StatDate"), cols=columns(STATS_COLUMNS), stats=self._db.daily_stats_table(s))
        with store_errors(AggregateRefreshError, f"fetch daily stats {day}"):
            with self._db.open(s) as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    r = cur.execute(q, (day,)).fetchone()
        return DailyStatsRow.model_validate(r) if r else None
