# FILE: forwarder/errors.py
from __future__ import annotations
import builtins
from typing import Optional


class ForwarderError(Exception):
    """Base class for every failure raised inside one forwarding cycle."""
    stage = "cycle"

    def __init__(self, message: str, row_id: Optional[int] = None):
        super().__init__(message)
        self.row_id = row_id


class StoreConnectionError(ForwarderError, builtins.ConnectionError):
    stage = "connect"


class SelectionError(ForwarderError):
    stage = "select"


class MaterializationError(ForwarderError):
    stage = "materialize"


class MarkingError(ForwarderError):
    stage = "mark"


class AggregateRefreshError(ForwarderError):
    stage = "refresh"
