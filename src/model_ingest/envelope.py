from __future__ import annotations
from typing import Any, Dict, Optional

from pydantic import BaseModel

from .errors import IngestError


class Envelope(BaseModel):
    """Uniform result shape for every ingest action: {success, message, data}."""

    success: bool
    message: Optional[str] = None
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> "Envelope":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str, data: Any = None) -> "Envelope":
        return cls(success=False, message=message, data=data)

    @classmethod
    def from_error(cls, err: IngestError) -> "Envelope":
        return cls.fail(err.message, err.data)

    def to_dict(self) -> Dict[str, Any]:
        # Only the top-level optional keys are dropped; nulls inside data are kept
        out: Dict[str, Any] = {"success": self.success}
        if self.message is not None:
            out["message"] = self.message
        if self.data is not None:
            out["data"] = self.data
        return out
