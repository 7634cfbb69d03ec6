from __future__ import annotations
from typing import Any, Dict, Optional


class IngestError(Exception):
    """Base for errors surfaced to the caller as a failed envelope."""

    status_code = 500

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data


class UserInputError(IngestError):
    status_code = 400


class ConflictError(IngestError):
    status_code = 409

    def __init__(self, data_source: str, message: Optional[str] = None) -> None:
        super().__init__(
            message
            or f"This file has already been processed (data_source: {data_source}). Delete it first to reprocess.",
            {"data_source": data_source, "exists": True},
        )
        self.data_source = data_source


class ConfigError(IngestError):
    status_code = 500


class ProposerError(IngestError):
    status_code = 500

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None, status: Optional[int] = None) -> None:
        super().__init__(message, data)
        self.status = status


class ProposerTransientError(ProposerError):
    status_code = 503
    retryable = True


class ProposerAuthError(ProposerError):
    status_code = 401


class MappingShapeError(IngestError):
    status_code = 500

    def __init__(self, message: str, snippet: str = "", error: Optional[str] = None) -> None:
        self.snippet = (snippet or "")[:600]
        super().__init__(message, {"error": error or message, "snippet": self.snippet})


class UnknownTransformError(MappingShapeError):
    pass


class NotFoundError(IngestError):
    status_code = 404
