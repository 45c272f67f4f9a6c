"""
Repository - Generic CRUD and Query Orchestration

🏗️ One Repository, Any Entity:
A Repository runs typed CRUD and ad-hoc queries for one entity type over
any BackingStore. Every mutating operation goes through three stages,
``before -> perform -> after``, each replaceable by an injected callable:

    async def stamp_owner(repository, entity):
        entity.owner = current_user()
        return entity

    companies = Repository(store, Company, hooks={Operation.ADD: Stages(before=stamp_owner)})

Default perform stages stamp audit timestamps, enforce soft-delete
visibility and stage the write. Nothing is committed until
:meth:`Repository.save_changes` (or an enclosing UnitOfWork) commits the
store.
"""

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any, AsyncIterator, Awaitable, Callable, Dict, Generic, List, NoReturn, Optional,
    Sequence, Type, TypeVar, Union
)

from pydantic import BaseModel, ValidationError

from ..config import RepositoryConfig
from ..core.entity import utc_now
from ..core.errors import InvalidError, Messages, ModelInvalidError, NotFoundError, ResolutionError
from ..queries.filter import FilterSpec, Predicate, QueryOperator
from ..queries.paths import ResolvedPath, SchemaRegistry, default_registry
from ..queries.projection import DynamicRecord, ProjectionSpec
from ..queries.sort import SortSpec
from .interface import BackingStore, QueryHandle

logger = logging.getLogger(__name__)

EntityType = TypeVar("EntityType")

Stage = Callable[["Repository", Any], Union[Any, Awaitable[Any]]]


class Operation(Enum):
    """Mutating repository operations with a stage pipeline"""
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
    SOFT_DELETE = "soft_delete"


@dataclass
class Stages:
    """
    Stage callables for one operation.

    Each stage is called as ``stage(repository, entity)``, may be sync or
    async, and returns the entity handed to the next stage (returning None
    keeps the current one). A missing ``perform`` falls back to the
    repository's ``perform_<operation>`` method.
    """
    before: Optional[Stage] = None
    perform: Optional[Stage] = None
    after: Optional[Stage] = None


class Repository(Generic[EntityType]):
    """
    Typed CRUD and querying for ``entity_class`` over a backing store.

    Subclasses may override :meth:`to_query`, :meth:`apply_includes` and the
    ``perform_*`` methods, or rename the audit fields through the class
    attributes below.
    """

    includes: Sequence[str] = ()
    id_field: str = "id"
    created_field: str = "created_at"
    updated_field: str = "updated_at"
    deleted_field: str = "deleted_at"

    def __init__(self, store: BackingStore, entity_class: Type[EntityType], *,
                 hooks: Optional[Dict[Union[Operation, str], Stages]] = None,
                 includes: Optional[Sequence[str]] = None,
                 registry: Optional[SchemaRegistry] = None,
                 clock: Callable[[], Any] = utc_now,
                 config: Optional[RepositoryConfig] = None):
        self.store = store
        self.entity_class = entity_class
        self.hooks: Dict[Operation, Stages] = {Operation(key): stages for key, stages in (hooks or {}).items()}
        if includes is not None:
            self.includes = tuple(includes)
        self.registry = registry or default_registry
        self.clock = clock
        self.config = config or RepositoryConfig()
        self.schema = self.registry.schema(entity_class)
        if self.id_field not in self.schema:
            raise InvalidError(f"{entity_class.__name__} has no identifier field '{self.id_field}'")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.entity_class.__name__}, store={self.store.__class__.__name__})"

    # Mutating operations
    async def add(self, entity: EntityType) -> EntityType:
        """Stage ``entity`` for insertion"""
        self._require_entity(entity)
        return await self._run(Operation.ADD, entity)

    async def update(self, entity: EntityType) -> EntityType:
        """Stage changes to an existing, non-deleted entity"""
        self._require_entity(entity)
        return await self._run(Operation.UPDATE, entity)

    async def delete(self, entity: EntityType) -> EntityType:
        """Stage physical removal of ``entity``"""
        self._require_entity(entity)
        return await self._run(Operation.DELETE, entity)

    async def delete_by_id(self, entity_id: Any) -> EntityType:
        entity = self.ensure_found(await self._lookup(entity_id), self._missing(entity_id))
        return await self.delete(entity)

    async def soft_delete(self, entity: EntityType) -> EntityType:
        """Stamp the deleted timestamp and stage the change; the row is kept"""
        self._require_entity(entity)
        if self.deleted_field not in self.schema:
            self.invalid(f"{self.entity_class.__name__} does not support soft delete")
        return await self._run(Operation.SOFT_DELETE, entity)

    async def soft_delete_by_id(self, entity_id: Any) -> EntityType:
        entity = self.ensure_found(await self._lookup(entity_id), self._missing(entity_id))
        return await self.soft_delete(entity)

    async def save_changes(self):
        """Commit every write staged on the store"""
        await self.store.commit()
        logger.debug(f"Saved changes for {self.entity_class.__name__}")

    # Default perform stages
    async def perform_add(self, entity: EntityType) -> EntityType:
        self._stamp(entity, self.created_field, self.clock())
        self._stamp(entity, self.updated_field, None)
        self._stamp(entity, self.deleted_field, None)
        self.validate(entity)
        logger.debug(f"Adding {self.entity_class.__name__}")
        return await self.store.add(entity)

    async def perform_update(self, entity: EntityType) -> EntityType:
        entity_id = self._entity_id(entity)
        existing = self.ensure_found(await self._lookup(entity_id), self._missing(entity_id))
        if existing is not entity and self.created_field in self.schema:
            if getattr(entity, self.created_field, None) is None:
                self._stamp(entity, self.created_field, getattr(existing, self.created_field, None))
        self._stamp(entity, self.updated_field, self.clock())
        self.validate(entity)
        logger.debug(f"Updating {self.entity_class.__name__} {entity_id!r}")
        return await self.store.update(entity)

    async def perform_delete(self, entity: EntityType) -> EntityType:
        logger.debug(f"Deleting {self.entity_class.__name__} {getattr(entity, self.id_field, None)!r}")
        await self.store.remove(entity)
        return entity

    async def perform_soft_delete(self, entity: EntityType) -> EntityType:
        self._stamp(entity, self.deleted_field, self.clock())
        logger.debug(f"Soft deleting {self.entity_class.__name__} {getattr(entity, self.id_field, None)!r}")
        return await self.store.update(entity)

    # Queries
    async def get(self, entity_id: Any) -> EntityType:
        """Entity with ``entity_id`` among visible rows, or NotFoundError"""
        entity = await self._lookup(entity_id, with_includes=True)
        return self.ensure_found(entity, self._missing(entity_id))

    async def exists_by_id(self, entity_id: Any) -> bool:
        return await self._by_id(entity_id).exists()

    async def find(self, filter: Optional[FilterSpec] = None, sort: Optional[SortSpec] = None,
                   projection: Optional[ProjectionSpec] = None, offset: int = 0, limit: int = 0,
                   include_deleted: bool = False) -> Union[List[EntityType], List[DynamicRecord]]:
        """
        Query entities.

        Args:
            filter: Predicates to match (all must hold)
            sort: Ordering keys, primary first
            projection: Paths to return; when given, rows come back as DynamicRecords
            offset: Rows to skip (0 for none)
            limit: Maximum rows to return (0 for no limit)
            include_deleted: Also match soft-deleted rows

        Returns:
            Full entities, or one DynamicRecord per row when projected
        """
        self._check_spec(filter, "filter")
        self._check_spec(sort, "sort")
        self._check_spec(projection, "projection")
        if offset < 0 or limit < 0:
            self.invalid("Offset and limit cannot be negative")

        query = self.to_query(include_deleted)
        if filter is not None:
            query = filter.apply(query)
        if sort is not None:
            query = sort.apply(query)
        if (offset or limit) and not sort and self.config.warn_unordered_pagination:
            logger.warning(
                f"Paging {self.entity_class.__name__} without a sort order; "
                "page contents are not stable across calls"
            )

        if projection is not None:
            query, paths = projection.apply(query)
            rows = await self._paginate(query, offset, limit).all()
            return [ProjectionSpec.reconstruct(paths, row) for row in rows]

        query = self._paginate(self.apply_includes(query), offset, limit)
        return await query.all()

    async def count(self, filter: Optional[FilterSpec] = None, include_deleted: bool = False) -> int:
        self._check_spec(filter, "filter")
        query = self.to_query(include_deleted)
        if filter is not None:
            query = filter.apply(query)
        return await query.count()

    async def exists(self, filter: Optional[FilterSpec] = None, include_deleted: bool = False) -> bool:
        self._check_spec(filter, "filter")
        query = self.to_query(include_deleted)
        if filter is not None:
            query = filter.apply(query)
        return await query.exists()

    async def stream(self, filter: Optional[FilterSpec] = None, sort: Optional[SortSpec] = None,
                     batch_size: Optional[int] = None, include_deleted: bool = False) -> AsyncIterator[EntityType]:
        """
        Stream matching entities batch by batch.

        Without a sort the batches are ordered by id so pages do not overlap.
        """
        batch_size = batch_size or self.config.stream_batch_size
        if batch_size <= 0:
            self.invalid("Batch size must be positive")
        if sort is None or not len(sort):
            sort = SortSpec(self.entity_class, self.registry).ascending(self.id_field)

        offset = 0
        while True:
            batch = await self.find(filter, sort, offset=offset, limit=batch_size,
                                    include_deleted=include_deleted)
            for entity in batch:
                yield entity
            if len(batch) < batch_size:
                break
            offset += batch_size

    # Overridable query hooks
    def to_query(self, include_deleted: bool = False) -> QueryHandle:
        """Base query for every read; hides soft-deleted rows unless asked not to"""
        query = self.store.query(self.entity_class)
        deleted = self._deleted_path()
        if not include_deleted and deleted is not None:
            query = query.where(Predicate(QueryOperator.IS_NULL, deleted))
        return query

    def apply_includes(self, query: QueryHandle) -> QueryHandle:
        """Eager-load the relationship paths listed in ``includes``"""
        for raw in self.includes:
            path = self.registry.resolve(self.entity_class, raw)
            for segment in path.segments:
                if not segment.is_relationship:
                    raise ResolutionError(segment.name, self.entity_class, raw,
                                          reason=f"Include '{segment.name}' is not a relationship")
            query = query.include(path)
        return query

    # Validation and error helpers
    def validate(self, entity: EntityType):
        """Re-validate pydantic entities; failures raise ModelInvalidError"""
        if not isinstance(entity, BaseModel):
            return
        try:
            type(entity).model_validate(entity.model_dump())
        except ValidationError as e:
            raise ModelInvalidError.from_validation_error(e, type(entity).__name__) from e

    def not_found(self, message: Messages = None, details: Optional[Dict[str, Any]] = None) -> NoReturn:
        raise NotFoundError(message, details)

    def invalid(self, message: Messages = None, details: Optional[Dict[str, Any]] = None) -> NoReturn:
        raise InvalidError(message, details)

    def model_invalid(self, message: Messages = None, details: Optional[Dict[str, Any]] = None) -> NoReturn:
        raise ModelInvalidError(message, details)

    def ensure_found(self, value: Optional[Any], message: Messages = None) -> Any:
        if value is None:
            self.not_found(message)
        return value

    # Internals
    async def _run(self, operation: Operation, entity: EntityType) -> EntityType:
        stages = self.hooks.get(operation) or Stages()
        perform = stages.perform or getattr(type(self), f"perform_{operation.value}")
        for stage in (stages.before, perform, stages.after):
            entity = await self._call_stage(stage, entity)
        return entity

    async def _call_stage(self, stage: Optional[Stage], entity: EntityType) -> EntityType:
        if stage is None:
            return entity
        result = stage(self, entity)
        if inspect.isawaitable(result):
            result = await result
        return entity if result is None else result

    def _by_id(self, entity_id: Any, include_deleted: bool = False) -> QueryHandle:
        spec = FilterSpec(self.entity_class, self.registry).equal(self.id_field, entity_id)
        return spec.apply(self.to_query(include_deleted))

    async def _lookup(self, entity_id: Any, with_includes: bool = False) -> Optional[EntityType]:
        if entity_id is None:
            self.invalid(f"{self.entity_class.__name__} id cannot be None")
        query = self._by_id(entity_id)
        if with_includes:
            query = self.apply_includes(query)
        return await query.first()

    def _paginate(self, query: QueryHandle, offset: int, limit: int) -> QueryHandle:
        if offset:
            query = query.offset(offset)
        if limit:
            query = query.limit(limit)
        return query

    def _deleted_path(self) -> Optional[ResolvedPath]:
        if self.deleted_field not in self.schema:
            return None
        return self.registry.resolve(self.entity_class, self.deleted_field)

    def _stamp(self, entity: EntityType, field_name: str, value: Any):
        info = self.schema.get(field_name)
        if info is not None:
            setattr(entity, info.name, value)

    def _entity_id(self, entity: EntityType) -> Any:
        entity_id = getattr(entity, self.id_field, None)
        if entity_id is None:
            self.invalid(f"{self.entity_class.__name__} has no {self.id_field}")
        return entity_id

    def _require_entity(self, entity: Any):
        if entity is None:
            self.invalid("Entity cannot be None")
        if not isinstance(entity, self.entity_class):
            self.invalid(f"Expected {self.entity_class.__name__}, got {type(entity).__name__}")

    def _check_spec(self, spec: Any, kind: str):
        if spec is not None and spec.entity_class is not self.entity_class:
            self.invalid(
                f"The {kind} targets {spec.entity_class.__name__}, "
                f"not {self.entity_class.__name__}"
            )
        if spec is not None and spec.registry is not self.registry:
            self.invalid(f"The {kind} was resolved against a different schema registry")

    def _missing(self, entity_id: Any) -> str:
        return f"{self.entity_class.__name__} {entity_id!r} not found"


# Export main components
__all__ = ["Repository", "Operation", "Stages", "Stage"]
