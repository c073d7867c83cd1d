# FILE: forwarder/__main__.py
from __future__ import annotations
import argparse, logging, signal, threading
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional
from prometheus_client import Gauge, start_http_server
from pythonjsonlogger import jsonlogger
from .db import ConnectionProvider
from .marker import DeliveryMarker
from .materializer import RecordMaterializer
from .selector import RowSelector
from .settings import Settings, SettingsCell, describe, ensure_folders
from .stats import AggregateRefresher
from .worker import Forwarder, Outcome

VERSION = "0.1.0"
INFO = Gauge("forwarder_info", "build info", ["version"])

logger = logging.getLogger("forwarder")

# -------- Logging --------
def setup_logging(s: Settings):
    fmt = jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    h = logging.StreamHandler(); h.setFormatter(fmt)
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(h)
    if s.LOG_FILE:
        Path(s.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
        fh = TimedRotatingFileHandler(s.LOG_FILE, when="midnight", backupCount=1, encoding="utf-8")
        fh.setFormatter(fmt)
        root.addHandler(fh)
    root.setLevel(s.LOG_LEVEL)


def _apply_log_level(old: Optional[Settings], new: Settings):
    if old is None or old.LOG_LEVEL != new.LOG_LEVEL:
        logging.getLogger().setLevel(new.LOG_LEVEL)


def build(cell: SettingsCell) -> Forwarder:
    db = ConnectionProvider(cell)
    return Forwarder(cell, RowSelector(db), RecordMaterializer(cell), DeliveryMarker(db), AggregateRefresher(db))


def main(argv=None) -> int:
    p = argparse.ArgumentParser(prog="forwarder", description="Forward unsent item log rows as CSV files.")
    p.add_argument("--env-file", default=None, help="settings file (default: $FORWARDER_ENV_FILE or .env)")
    p.add_argument("--once", action="store_true", help="run a single cycle and exit")
    args = p.parse_args(argv)

    cell = SettingsCell(env_file=args.env_file)
    s = cell.current
    setup_logging(s)
    INFO.labels(version=VERSION).set(1.0)
    cell.on_change(ensure_folders, fire=True)
    cell.on_change(_apply_log_level)

    logger.info("db config loaded", extra={"target": describe(s), "schema": s.DB_SCHEMA,
                                           "item_log_table": s.ITEM_LOG_TABLE, "stats_table": s.DAILY_STATS_TABLE})
    logger.info("upload config loaded", extra={"folder": s.CSV_OUTPUT_FOLDER, "replica": s.CSV_REPLICA_FOLDER,
                                               "interval_ms": s.INTERVAL_MS})
    if s.METRICS_PORT:
        start_http_server(s.METRICS_PORT)

    fw = build(cell)
    if args.once:
        res = fw.run_cycle()
        return 1 if res.outcome is Outcome.FAILED else 0

    stop = threading.Event()
    def _stop(signum, _frame):
        logger.info("stop requested", extra={"signal": signum})
        stop.set()
    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    def _reload():
        try:
            cell.reload()
        except Exception:
            logger.exception("settings reload failed; keeping previous values")
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, lambda *_: threading.Thread(target=_reload, daemon=True).start())
    fw.run(stop)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
