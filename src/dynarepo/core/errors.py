"""
Repository Errors - Caller-Recoverable Failure Signals

🚨 Error Taxonomy:
Build-time errors (bad path, bad operand) are raised while a query spec is
being constructed, before any backing store is touched. Operation-time
errors (missing entity, failed precondition) are raised by the repository
and mapped to caller-visible outcomes at the boundary.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

Messages = Union[str, Sequence[str], None]


class RepositoryError(Exception):
    """Base exception for repository operations"""

    default_message = "Repository operation failed"

    def __init__(self, message: Messages = None, details: Optional[Dict[str, Any]] = None,
                 separator: str = "\n"):
        if message is None:
            self.messages: List[str] = [self.default_message]
        elif isinstance(message, str):
            self.messages = [message]
        else:
            self.messages = [str(m) for m in message] or [self.default_message]
        self.message = separator.join(self.messages)
        self.details = details or {}
        super().__init__(self.message)


class QueryBuildError(RepositoryError):
    """Raised while building a filter, sort or projection spec"""

    default_message = "Query could not be built"


class ResolutionError(QueryBuildError):
    """Raised when a property path segment does not name a readable field"""

    def __init__(self, segment: str, type_: Any, path: str, reason: Optional[str] = None):
        self.segment = segment
        self.type = type_
        self.path = path
        type_name = getattr(type_, "__name__", repr(type_))
        message = reason or f"Property '{segment}' not found on type '{type_name}'"
        super().__init__(
            f"{message} in path '{path}'",
            details={"segment": segment, "type": type_name, "path": path},
        )


class FilterBuildError(QueryBuildError):
    """Raised when a filter operand does not fit the resolved field"""

    def __init__(self, path: str, value: Any, target_type: Any, reason: Optional[str] = None):
        self.path = path
        self.value = value
        self.target_type = target_type
        type_name = getattr(target_type, "__name__", repr(target_type))
        message = reason or f"Value {value!r} cannot be converted to '{type_name}'"
        super().__init__(
            f"{message} (path '{path}')",
            details={"path": path, "value": repr(value), "target_type": type_name},
        )


class ProjectionMismatchError(RepositoryError):
    """Raised when a fetched row does not line up with the projected paths"""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Projected row has {actual} values but {expected} paths were requested",
            details={"expected": expected, "actual": actual},
        )


class NotFoundError(RepositoryError):
    """Raised when an entity or id is absent"""

    default_message = "Resource not found"


class InvalidError(RepositoryError):
    """Raised when an operation precondition fails"""

    default_message = "Operation is invalid"


class ModelInvalidError(InvalidError):
    """Raised when entity-level validation fails"""

    default_message = "Model is invalid"

    @classmethod
    def from_validation_error(cls, error: Any, model_name: str) -> "ModelInvalidError":
        """One message per pydantic error, prefixed with the failing field"""
        messages = [
            f"{'.'.join(str(part) for part in item['loc']) or model_name}: {item['msg']}"
            for item in error.errors()
        ]
        return cls(messages, details={"model": model_name})


# Export main components
__all__ = [
    "RepositoryError", "QueryBuildError", "ResolutionError", "FilterBuildError",
    "ProjectionMismatchError", "NotFoundError", "InvalidError", "ModelInvalidError",
]
