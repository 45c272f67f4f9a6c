"""
Sort Spec - Multi-Key Stable Ordering

📶 Ordering Over Property Paths:
The first key is the primary ordering and every following key only breaks
ties left by the keys before it. Paths must address scalar fields reachable
through to-one relationships; ordering by a value inside a collection has no
single answer per row and is rejected when the key is added.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, List, Optional, Tuple, Type, TypeVar, TYPE_CHECKING

from ..core.errors import ResolutionError
from .paths import PathLike, ResolvedPath, SchemaRegistry, default_registry

if TYPE_CHECKING:
    from ..persistence.interface import QueryHandle

EntityType = TypeVar("EntityType")


class SortDirection(Enum):
    """Sort direction for queries"""
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class SortKey:
    path: ResolvedPath
    direction: SortDirection = SortDirection.ASC

    @property
    def descending(self) -> bool:
        return self.direction is SortDirection.DESC

    def __str__(self) -> str:
        return f"{self.path.raw} {self.direction.value}"


def require_orderable_path(resolved: ResolvedPath, purpose: str):
    """Reject paths that end on a relationship or cross a collection"""
    if not resolved.is_scalar:
        raise ResolutionError(resolved.leaf.name, resolved.root, resolved.raw,
                              reason=f"Cannot {purpose} by related entity '{resolved.leaf.name}'")
    for segment in resolved.segments:
        if segment.is_collection and segment.is_relationship:
            raise ResolutionError(segment.name, resolved.root, resolved.raw,
                                  reason=f"Cannot {purpose} across collection '{segment.name}'")


class SortSpec(Generic[EntityType]):
    """Ordered (path, direction) keys over ``entity_class``"""

    def __init__(self, entity_class: Type[EntityType], registry: Optional[SchemaRegistry] = None):
        self.entity_class = entity_class
        self.registry = registry or default_registry
        self._keys: List[SortKey] = []

    @property
    def keys(self) -> Tuple[SortKey, ...]:
        return tuple(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self):
        return iter(self._keys)

    def __repr__(self) -> str:
        return f"SortSpec({self.entity_class.__name__}: {', '.join(str(k) for k in self._keys)})"

    def ascending(self, path: PathLike) -> "SortSpec[EntityType]":
        return self._add(path, SortDirection.ASC)

    def descending(self, path: PathLike) -> "SortSpec[EntityType]":
        return self._add(path, SortDirection.DESC)

    def apply(self, query: "QueryHandle") -> "QueryHandle":
        """Primary key first, then each tie-breaker; no keys leaves ``query`` untouched"""
        for key in self._keys:
            query = query.order_by(key)
        return query

    def _add(self, path: PathLike, direction: SortDirection) -> "SortSpec[EntityType]":
        resolved = self.registry.resolve(self.entity_class, path)
        require_orderable_path(resolved, "sort")
        self._keys.append(SortKey(resolved, direction))
        return self


# Export main components
__all__ = ["SortSpec", "SortKey", "SortDirection", "require_orderable_path"]
