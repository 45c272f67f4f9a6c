"""
dynarepo - generic repository with dynamic query composition.

Resolve dot-separated property paths against entity types at runtime,
compose filters, multi-key sorts and projections from them, and run typed
CRUD through a before/perform/after pipeline with audit timestamps and soft
delete, over an SQLAlchemy AsyncSession or an in-memory store.
"""

from .config import (
    Environment, LoggingConfig, PathConfig, RepositoryConfig, SQLConfig, Settings, configure_logging
)
from .core import (
    Entity, utc_now,
    RepositoryError, QueryBuildError, ResolutionError, FilterBuildError,
    ProjectionMismatchError, NotFoundError, InvalidError, ModelInvalidError,
)
from .queries import (
    SchemaRegistry, ResolvedPath, FieldInfo, default_registry, resolve,
    FilterSpec, Predicate, QueryOperator,
    SortSpec, SortKey, SortDirection,
    ProjectionSpec, DynamicRecord,
)
from .persistence import (
    BackingStore, QueryHandle, Repository, Operation, Stages, UnitOfWork,
    MemoryDatabase, MemoryStore, SQLStore,
)
from .persistence.backends.sql import create_engine, create_session_factory, create_tables

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "Environment", "LoggingConfig", "PathConfig", "RepositoryConfig", "SQLConfig", "Settings",
    "configure_logging",
    # Core
    "Entity", "utc_now",
    "RepositoryError", "QueryBuildError", "ResolutionError", "FilterBuildError",
    "ProjectionMismatchError", "NotFoundError", "InvalidError", "ModelInvalidError",
    # Queries
    "SchemaRegistry", "ResolvedPath", "FieldInfo", "default_registry", "resolve",
    "FilterSpec", "Predicate", "QueryOperator",
    "SortSpec", "SortKey", "SortDirection",
    "ProjectionSpec", "DynamicRecord",
    # Persistence
    "BackingStore", "QueryHandle", "Repository", "Operation", "Stages", "UnitOfWork",
    "MemoryDatabase", "MemoryStore", "SQLStore",
    "create_engine", "create_session_factory", "create_tables",
]
