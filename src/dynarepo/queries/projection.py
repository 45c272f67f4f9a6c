"""
Projection Spec - Minimal Fetch and Record Reconstruction

📦 Shape-Varying Results:
A projection names the property paths a caller wants back. The backing
store fetches only those values as a flat row (one value per path, in a
fixed lexicographic path order) and every row is rebuilt into a nested
DynamicRecord:

    ProjectionSpec(Employee).include("name").include("company.name")
    # row ("Acme", "Ada")  ->  {"company": {"name": "Acme"}, "name": "Ada"}
"""

from typing import Any, Dict, Generic, List, Optional, Sequence, Tuple, Type, TypeVar, TYPE_CHECKING

from ..core.errors import ProjectionMismatchError
from .paths import PathLike, ResolvedPath, SchemaRegistry, as_path, default_registry
from .sort import require_orderable_path

if TYPE_CHECKING:
    from ..persistence.interface import QueryHandle

EntityType = TypeVar("EntityType")


class DynamicRecord(dict):
    """
    Ordered mapping produced by projected queries.

    Values are None, scalars or nested DynamicRecords. Keys are also
    readable as attributes (``record.company.name``).
    """

    def __getattr__(self, name: str) -> Any:
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None

    def __repr__(self) -> str:
        return f"DynamicRecord({dict.__repr__(self)})"


class ProjectionSpec(Generic[EntityType]):
    """Set of included property paths over ``entity_class``"""

    def __init__(self, entity_class: Type[EntityType], registry: Optional[SchemaRegistry] = None):
        self.entity_class = entity_class
        self.registry = registry or default_registry
        self._paths: Dict[str, ResolvedPath] = {}

    @property
    def paths(self) -> Tuple[str, ...]:
        """Included path strings in column order"""
        return tuple(sorted(self._paths))

    def __len__(self) -> int:
        return len(self._paths)

    def __contains__(self, path: str) -> bool:
        return path in self._paths

    def __repr__(self) -> str:
        return f"ProjectionSpec({self.entity_class.__name__}: {list(self.paths)})"

    def include(self, path: PathLike) -> "ProjectionSpec[EntityType]":
        """Add ``path``; an exact duplicate or a blank path is ignored"""
        raw = as_path(path, self.entity_class)
        if not raw.strip() or raw in self._paths:
            return self
        resolved = self.registry.resolve(self.entity_class, raw)
        require_orderable_path(resolved, "project")
        self._paths[raw] = resolved
        return self

    def resolved_paths(self) -> List[ResolvedPath]:
        return [self._paths[raw] for raw in sorted(self._paths)]

    def apply(self, query: "QueryHandle") -> Tuple["QueryHandle", List[str]]:
        """
        Narrow ``query`` to the included values.

        Returns the projected handle and the canonical paths matching its
        column order, ready for :meth:`reconstruct`.
        """
        resolved = self.resolved_paths()
        return query.project(resolved), [path.canonical for path in resolved]

    @staticmethod
    def reconstruct(ordered_paths: Sequence[str], values: Sequence[Any]) -> DynamicRecord:
        """Rebuild one flat row into a nested DynamicRecord"""
        record = DynamicRecord()
        if not ordered_paths:
            return record
        if len(values) != len(ordered_paths):
            raise ProjectionMismatchError(len(ordered_paths), len(values))

        for path, value in zip(ordered_paths, values):
            *parents, leaf = path.split(".")
            node = record
            for name in parents:
                child = node.get(name)
                if not isinstance(child, DynamicRecord):
                    child = DynamicRecord()
                    node[name] = child
                node = child
            node[leaf] = value
        return record


# Export main components
__all__ = ["ProjectionSpec", "DynamicRecord"]
