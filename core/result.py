from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

NOT_FOUND = "not_found"
VALIDATION = "validation"
CONFLICT = "conflict"
EXTERNAL = "external"
RATE_LIMITED = "rate_limited"


@dataclass
class ActionResult:
    """Outcome of a service operation. Failures are values, never exceptions."""
    success: bool
    error: Optional[str] = None
    code: Optional[str] = None
    errors: List[Dict[str, str]] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, code: str = VALIDATION, errors: Optional[List[Dict[str, str]]] = None) -> "ActionResult":
        return cls(success=False, error=error, code=code, errors=errors or [])

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, **self.data}
        body: Dict[str, Any] = {"success": False, "error": self.error}
        if self.errors:
            body["errors"] = self.errors
        return body
