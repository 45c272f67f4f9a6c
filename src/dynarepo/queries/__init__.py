"""
Queries - backend-neutral filter, sort and projection specs built over
runtime-resolved property paths.
"""

from .paths import (
    FieldInfo, EntitySchema, ResolvedPath, SchemaRegistry, default_registry, resolve, as_path
)
from .filter import FilterSpec, Predicate, QueryOperator
from .sort import SortSpec, SortKey, SortDirection
from .projection import ProjectionSpec, DynamicRecord

__all__ = [
    "FieldInfo", "EntitySchema", "ResolvedPath", "SchemaRegistry", "default_registry",
    "resolve", "as_path",
    "FilterSpec", "Predicate", "QueryOperator",
    "SortSpec", "SortKey", "SortDirection",
    "ProjectionSpec", "DynamicRecord",
]
