# FILE: forwarder/materializer.py
from __future__ import annotations
import csv, io, os, re, shutil, tempfile, logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Sequence
from prometheus_client import Counter
from .errors import MaterializationError
from .models import ITEM_LOG_COLUMNS, ItemLogRow
from .settings import Settings, SettingsCell

logger = logging.getLogger("forwarder.materializer")

REPLICA_FAIL = Counter("forwarder_replica_failures_total", "secondary copy failures")

_UNSAFE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
TS_FORMAT = "%Y-%m-%dT%H:%M:%S"


def sanitize_file_name(name: str) -> str:
    return _UNSAFE.sub("_", name)

def record_file_name(row: ItemLogRow) -> str:
    return sanitize_file_name(f"record_{row.id}_{row.timestamp:%Y%m%d_%H%M%S}.csv")

def _cell(v) -> str:
    if v is None:
        return ""
    if isinstance(v, bool):
        return "1" if v else "0"
    if isinstance(v, datetime):
        return v.strftime(TS_FORMAT)
    return str(v)

def to_csv_lines(rows: Iterable[ItemLogRow], include_header: bool = False) -> str:
    buf = io.StringIO()
    w = csv.writer(buf, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    if include_header:
        w.writerow(ITEM_LOG_COLUMNS)
    for r in rows:
        w.writerow([_cell(v) for v in r.values()])
    return buf.getvalue()

def to_csv(row: ItemLogRow, include_header: bool = False) -> str:
    return to_csv_lines([row], include_header=include_header)


class RecordMaterializer:
    """Writes rows as CSV into the output folder and mirrors each file into the replica folder."""

    def __init__(self, cell: SettingsCell):
        self._cell = cell

    def materialize(self, row: ItemLogRow, s: Optional[Settings] = None) -> Path:
        return self._write(record_file_name(row), to_csv(row), s, row_id=row.id)

    def write_records(self, rows: Sequence[ItemLogRow], file_name: Optional[str] = None,
                      s: Optional[Settings] = None) -> Path:
        rows = list(rows)
        if not rows:
            raise MaterializationError("no records to write")
        name = file_name or f"records_{datetime.now(timezone.utc):%Y%m%d_%H%M%S}.csv"
        return self._write(sanitize_file_name(name), to_csv_lines(rows), s)

    def _write(self, name: str, text: str, s: Optional[Settings], row_id: Optional[int] = None) -> Path:
        s = s if s is not None else self._cell.current
        folder = Path(s.CSV_OUTPUT_FOLDER)
        path = folder / name
        tmp = None
        try:
            folder.mkdir(parents=True, exist_ok=True)
            # readers only ever see a complete file under the final name
            fd, tmp = tempfile.mkstemp(dir=folder, prefix=f".{name}.", suffix=".tmp")
            # newline="" keeps the writer's \r\n as-is
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(text)
            os.chmod(tmp, 0o644)
            os.replace(tmp, path)
        except OSError as e:
            if tmp is not None and os.path.exists(tmp):
                os.unlink(tmp)
            raise MaterializationError(f"cannot write {path}: {e}", row_id=row_id) from e
        if s.CSV_REPLICA_FOLDER:
            self._replicate(path, Path(s.CSV_REPLICA_FOLDER), row_id)
        return path

    def _replicate(self, src: Path, folder: Path, row_id: Optional[int]):
        dest = folder / src.name
        try:
            folder.mkdir(parents=True, exist_ok=True)
            part = dest.with_name(f".{dest.name}.{os.getpid()}.tmp")
            shutil.copyfile(src, part)
            os.replace(part, dest)
        except OSError:
            REPLICA_FAIL.inc()
            logger.error("replica copy failed", exc_info=True,
                         extra={"row_id": row_id, "path": str(src), "replica": str(dest)})
            return
        logger.debug("replica written", extra={"row_id": row_id, "replica": str(dest)})
