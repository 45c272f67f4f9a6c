"""
Core - entity base and error taxonomy shared by every layer.
"""

from .entity import Entity, utc_now
from .errors import (
    RepositoryError, QueryBuildError, ResolutionError, FilterBuildError,
    ProjectionMismatchError, NotFoundError, InvalidError, ModelInvalidError
)

__all__ = [
    "Entity", "utc_now",
    "RepositoryError", "QueryBuildError", "ResolutionError", "FilterBuildError",
    "ProjectionMismatchError", "NotFoundError", "InvalidError", "ModelInvalidError",
]
