# FILE: forwarder/settings.py
from __future__ import annotations
import os, threading, logging
from pathlib import Path
from typing import Callable, List, Optional
from pydantic_settings import BaseSettings
from psycopg.conninfo import make_conninfo, conninfo_to_dict

logger = logging.getLogger("forwarder.settings")

ENV_FILE = os.getenv("FORWARDER_ENV_FILE", ".env")

# -------- Settings --------
class Settings(BaseSettings):
    # store
    DATABASE_URL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "tracesol"
    DB_USER: str = "tracesol"
    DB_PASSWORD: str = ""
    DB_SCHEMA: str = "public"
    DB_CONNECT_TIMEOUT: int = 5
    ITEM_LOG_TABLE: str = "Records"
    DAILY_STATS_TABLE: str = "DailyStats"
    # pipeline
    CSV_OUTPUT_FOLDER: str = "./out/csv"
    CSV_REPLICA_FOLDER: Optional[str] = None
    INTERVAL_MS: int = 500
    STALL_WARN_CYCLES: int = 120
    # process
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None
    METRICS_PORT: Optional[int] = None

    class Config:
        env_file = ".env"
        extra = "ignore"
        frozen = True

    def conninfo(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return make_conninfo(host=self.DB_HOST, port=self.DB_PORT, dbname=self.DB_NAME,
                             user=self.DB_USER, password=self.DB_PASSWORD)

    @property
    def interval_s(self) -> float:
        return max(self.INTERVAL_MS, 0) / 1000.0


def mask(value: Optional[str]) -> str:
    if not value:
        return ""
    return value[0] + "*" * (len(value) - 1)


def describe(s: Settings) -> str:
    """Connection target for logs: host, database and a masked user, never the password."""
    if s.DATABASE_URL:
        parts = conninfo_to_dict(s.DATABASE_URL)
        host, db, user = parts.get("host", ""), parts.get("dbname", ""), parts.get("user", "")
    else:
        host, db, user = s.DB_HOST, s.DB_NAME, s.DB_USER
    return f"Server={host}; Database={db}; User Id={mask(user)}"


def load(env_file: Optional[str] = None) -> Settings:
    return Settings(_env_file=env_file or ENV_FILE)


# -------- Hot reload --------
Hook = Callable[[Optional[Settings], Settings], None]

class SettingsCell:
    """Holds the current immutable snapshot; reload swaps it in one assignment."""

    def __init__(self, initial: Optional[Settings] = None, env_file: Optional[str] = None,
                 loader: Callable[[Optional[str]], Settings] = load):
        self._env_file = env_file or ENV_FILE
        self._loader = loader
        self._lk = threading.Lock()
        self._hooks: List[Hook] = []
        self._mtime = self._stat()
        self._current = initial if initial is not None else loader(self._env_file)

    def _stat(self) -> Optional[float]:
        try:
            return Path(self._env_file).stat().st_mtime
        except OSError:
            return None

    @property
    def current(self) -> Settings:
        return self._current

    def on_change(self, hook: Hook, fire: bool = False):
        self._hooks.append(hook)
        if fire:
            self._run_hook(hook, None, self._current)

    def _run_hook(self, hook: Hook, old: Optional[Settings], new: Settings):
        try:
            hook(old, new)
        except Exception:
            logger.exception("settings change hook failed", extra={"hook": getattr(hook, "__name__", repr(hook))})

    def reload(self) -> bool:
        with self._lk:
            new = self._loader(self._env_file)
            old = self._current
            self._mtime = self._stat()
            if new == old:
                return False
            self._current = new
        logger.info("settings reloaded", extra={"interval_ms": new.INTERVAL_MS, "folder": new.CSV_OUTPUT_FOLDER,
                                                "replica": new.CSV_REPLICA_FOLDER, "table": new.ITEM_LOG_TABLE})
        for hook in list(self._hooks):
            self._run_hook(hook, old, new)
        return True

    def poll(self) -> Settings:
        """Reload when the env file changed on disk; keep the old snapshot if the new one is invalid."""
        if self._stat() != self._mtime:
            try:
                self.reload()
            except Exception:
                self._mtime = self._stat()
                logger.exception("settings reload failed; keeping previous values")
        return self._current


def ensure_folders(old: Optional[Settings], new: Settings):
    for attr in ("CSV_OUTPUT_FOLDER", "CSV_REPLICA_FOLDER"):
        path = getattr(new, attr)
        if not path or (old is not None and getattr(old, attr) == path):
            continue
        try:
            os.makedirs(path, exist_ok=True)
        except OSError:
            logger.error("failed to create %s", attr, exc_info=True, extra={"path": path})
