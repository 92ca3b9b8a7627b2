"""Error taxonomy shared by the queue, fetch and extraction layers."""
from __future__ import annotations

import traceback
from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base class for operational pipeline failures."""

    code = "PIPELINE_ERROR"

    def __init__(self, message: str, *, meta: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.meta = dict(meta or {})

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the error into a Call error entry."""
        entry: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.meta:
            entry["meta"] = self.meta
        return entry


class PersistenceError(PipelineError):
    code = "PERSISTENCE_FAILED"


class EmptyQueue(PipelineError):
    code = "QUEUE_EMPTY"


class NotFound(PipelineError):
    code = "NOT_FOUND"


class UnknownKind(PipelineError):
    code = "UNKNOWN_KIND"


class CallFinalizedError(PipelineError):
    code = "CALL_FINALIZED"


class FetchError(PipelineError):
    code = "FETCH_FAILED"


class ExtractionError(PipelineError):
    code = "EXTRACTION_FAILED"


def error_entry(exc: BaseException) -> Dict[str, Any]:
    """Describe any exception as a Call error entry, keeping the traceback."""
    if isinstance(exc, PipelineError):
        entry = exc.to_dict()
    else:
        entry = {"code": type(exc).__name__, "message": str(exc)}
    entry["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return entry
