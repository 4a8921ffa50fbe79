from typing import Any, Optional

from pydantic import BaseModel


class ActionResult(BaseModel):
    """Outcome of a workflow operation; callers show ``message`` to the user."""
    success: bool
    message: str
    error_kind: Optional[str] = None
    request_id: Optional[int] = None
    data: Optional[Any] = None

    @classmethod
    def ok(cls, message: str, **kwargs) -> "ActionResult":
        return cls(success=True, message=message, **kwargs)

    @classmethod
    def fail(cls, message: str, error_kind: Optional[str] = None, **kwargs) -> "ActionResult":
        return cls(success=False, message=message, error_kind=error_kind, **kwargs)
