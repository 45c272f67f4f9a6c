"""
Memory Store - In-Memory Backing Store

🧠 Dictionary-Backed Storage:
Committed rows live in a MemoryDatabase shared by any number of stores.
Each MemoryStore is one unit of work over that database: it stages inserts,
updates and removals, sees its own staged writes, and publishes them on
commit. Queries are evaluated in Python with the same accessor chains the
query specs resolve, following SQL semantics for NULL comparisons so results
match the SQL store.
"""

import copy
import dataclasses
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type
from uuid import UUID, uuid4

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Mapper
from sqlalchemy.orm.attributes import set_committed_value

from ...core.errors import InvalidError, QueryBuildError
from ...queries.filter import Predicate, QueryOperator
from ...queries.paths import ResolvedPath, SchemaRegistry, default_registry
from ...queries.sort import SortKey
from ..interface import BackingStore, EntityType, QueryHandle

logger = logging.getLogger(__name__)

RowKey = Tuple[type, Any]


class MemoryDatabase:
    """Committed rows per entity type, plus id sequences"""

    def __init__(self):
        self._tables: Dict[type, Dict[Any, Any]] = defaultdict(dict)
        self._sequences: Dict[type, int] = defaultdict(int)

    def table(self, entity_class: Type) -> Dict[Any, Any]:
        return self._tables[entity_class]

    def tables(self) -> List[Dict[Any, Any]]:
        return list(self._tables.values())

    def next_id(self, entity_class: Type, id_type: Any) -> Any:
        """Generate an identifier of ``id_type`` for a new row"""
        if isinstance(id_type, type) and issubclass(id_type, int) and not issubclass(id_type, bool):
            self._sequences[entity_class] += 1
            return self._sequences[entity_class]
        if id_type is UUID:
            return uuid4()
        return str(uuid4())

    def observe_id(self, entity_class: Type, entity_id: Any):
        """Keep the integer sequence ahead of explicitly assigned ids"""
        if isinstance(entity_id, int) and entity_id > self._sequences[entity_class]:
            self._sequences[entity_class] = entity_id

    def session(self, **kwargs) -> "MemoryStore":
        return MemoryStore(self, **kwargs)

    def clear(self):
        self._tables.clear()
        self._sequences.clear()


def _compare(operator: QueryOperator, value: Any, operand: Any) -> bool:
    """Evaluate one comparison with SQL NULL semantics"""
    if operator is QueryOperator.EQUALS:
        return value is None if operand is None else (value is not None and value == operand)
    if operator is QueryOperator.NOT_EQUALS:
        return value is not None if operand is None else (value is not None and value != operand)
    if value is None:
        return False

    if operator is QueryOperator.GREATER_THAN:
        return value > operand
    if operator is QueryOperator.GREATER_THAN_OR_EQUAL:
        return value >= operand
    if operator is QueryOperator.LESS_THAN:
        return value < operand
    if operator is QueryOperator.LESS_THAN_OR_EQUAL:
        return value <= operand
    if operator is QueryOperator.BETWEEN:
        low, high = operand
        return low <= value <= high
    if operator is QueryOperator.IN:
        return value in operand
    if operator is QueryOperator.NOT_IN:
        return value not in operand
    if operator is QueryOperator.CONTAINS:
        return isinstance(value, str) and operand in value
    if operator is QueryOperator.STARTS_WITH:
        return isinstance(value, str) and value.startswith(operand)
    if operator is QueryOperator.ENDS_WITH:
        return isinstance(value, str) and value.endswith(operand)
    raise QueryBuildError(f"Unsupported operator {operator.value}")


def matches(predicate: Predicate, entity: Any) -> bool:
    """True when ``entity`` satisfies ``predicate``; collections match if any item does"""
    operator = predicate.operator
    if operator is QueryOperator.CUSTOM:
        if not callable(predicate.value):
            raise QueryBuildError("Custom conditions for the memory store must be callables")
        return bool(predicate.value(entity))

    values = predicate.path.iter_values(entity)
    if operator is QueryOperator.IS_NULL:
        return any(value is None for value in values)
    if operator is QueryOperator.IS_NOT_NULL:
        return any(value is not None for value in values)
    return any(_compare(operator, value, predicate.value) for value in values)


def _sort_value(path: ResolvedPath, entity: Any) -> Tuple:
    value = path.read(entity)
    # None orders before every value
    return (0,) if value is None else (1, value)


@dataclass(frozen=True)
class MemoryQuery(QueryHandle[EntityType]):
    """Immutable in-memory query; evaluated when awaited"""

    store: "MemoryStore"
    entity_class: Type[EntityType]
    predicates: Tuple[Predicate, ...] = ()
    keys: Tuple[SortKey, ...] = ()
    includes: Tuple[ResolvedPath, ...] = ()
    projection: Optional[Tuple[ResolvedPath, ...]] = None
    skip: int = 0
    take: Optional[int] = None

    def where(self, predicate: Predicate) -> "MemoryQuery[EntityType]":
        return dataclasses.replace(self, predicates=self.predicates + (predicate,))

    def order_by(self, key: SortKey) -> "MemoryQuery[EntityType]":
        return dataclasses.replace(self, keys=self.keys + (key,))

    def include(self, path: ResolvedPath) -> "MemoryQuery[EntityType]":
        # Related objects are already reachable in memory
        return dataclasses.replace(self, includes=self.includes + (path,))

    def project(self, paths: Sequence[ResolvedPath]) -> "MemoryQuery[EntityType]":
        return dataclasses.replace(self, projection=tuple(paths))

    def offset(self, count: int) -> "MemoryQuery[EntityType]":
        return dataclasses.replace(self, skip=count)

    def limit(self, count: int) -> "MemoryQuery[EntityType]":
        return dataclasses.replace(self, take=count)

    def _evaluate(self) -> List[Any]:
        rows = [row for row in self.store.rows(self.entity_class)
                if all(matches(predicate, row) for predicate in self.predicates)]

        # Stable sorts applied from the last key to the first
        for key in reversed(self.keys):
            rows.sort(key=lambda row, path=key.path: _sort_value(path, row), reverse=key.descending)

        end = None if self.take is None else self.skip + self.take
        return rows[self.skip:end]

    async def all(self) -> List[Any]:
        rows = self._evaluate()
        if self.projection is None:
            return rows
        return [tuple(path.read(row) for path in self.projection) for row in rows]

    async def first(self) -> Optional[Any]:
        rows = await self.limit(1).all()
        return rows[0] if rows else None

    async def count(self) -> int:
        return len(self._evaluate())

    async def exists(self) -> bool:
        return bool(self._evaluate())


class MemoryStore(BackingStore):
    """
    Unit of work over a MemoryDatabase.

    Rows are handed out as copies private to this store, so changes made to
    them stay invisible to other stores. Staged writes and changed copies are
    published on :meth:`commit`; :meth:`rollback` discards them.
    """

    def __init__(self, database: Optional[MemoryDatabase] = None, id_field: str = "id",
                 registry: Optional[SchemaRegistry] = None):
        self.database = database or MemoryDatabase()
        self.id_field = id_field
        self.registry = registry or default_registry
        self._added: Dict[RowKey, Any] = {}
        self._updated: Dict[RowKey, Any] = {}
        self._removed: Dict[RowKey, Any] = {}
        self._copies: Dict[RowKey, Tuple[Any, Any, Dict[str, Any]]] = {}

    @property
    def has_pending(self) -> bool:
        return bool(self._added or self._updated or self._removed)

    def query(self, entity_class: Type[EntityType]) -> MemoryQuery[EntityType]:
        return MemoryQuery(self, entity_class)

    def rows(self, entity_class: Type) -> List[Any]:
        """Committed rows overlaid with this store's staged writes, in insertion order"""
        rows = []
        for entity_id, row in self.database.table(entity_class).items():
            key = (entity_class, entity_id)
            if key in self._removed:
                continue
            rows.append(self._updated[key] if key in self._updated else self._working_copy(key, row))
        rows.extend(row for (cls, _), row in self._added.items() if cls is entity_class)
        return rows

    async def get(self, entity_class: Type[EntityType], entity_id: Any) -> Optional[EntityType]:
        key = (entity_class, entity_id)
        if key in self._removed:
            return None
        for source in (self._added, self._updated):
            if key in source:
                return source[key]
        row = self.database.table(entity_class).get(entity_id)
        return None if row is None else self._working_copy(key, row)

    async def add(self, entity: EntityType) -> EntityType:
        entity_class = type(entity)
        entity_id = getattr(entity, self.id_field, None)
        if entity_id is None:
            entity_id = self.database.next_id(entity_class, self._id_type(entity_class))
            setattr(entity, self.id_field, entity_id)
        key = (entity_class, entity_id)
        committed = entity_id in self.database.table(entity_class) and key not in self._removed
        if committed or key in self._added:
            raise InvalidError(f"{entity_class.__name__} with id {entity_id!r} already exists")
        self.database.observe_id(entity_class, entity_id)
        if self._removed.pop(key, None) is not None:
            # Replaces a row removed earlier in this unit of work
            self._updated[key] = entity
        else:
            self._added[key] = entity
        logger.debug(f"Staged insert of {entity_class.__name__} {entity_id!r}")
        return entity

    async def update(self, entity: EntityType) -> EntityType:
        key = self._key(entity)
        if key in self._added:
            self._added[key] = entity
        else:
            self._updated[key] = entity
        logger.debug(f"Staged update of {key[0].__name__} {key[1]!r}")
        return entity

    async def remove(self, entity: EntityType):
        key = self._key(entity)
        self._updated.pop(key, None)
        if self._added.pop(key, None) is None:
            self._removed[key] = entity
        logger.debug(f"Staged removal of {key[0].__name__} {key[1]!r}")

    async def commit(self):
        changed = {
            key: row for key, (row, _, state) in self._copies.items()
            if key not in self._removed and key not in self._updated
            and key[1] in self.database.table(key[0]) and self._state(row) != state
        }
        outgoing = {**changed, **self._updated, **self._added}

        for entity_class, entity_id in self._removed:
            self.database.table(entity_class).pop(entity_id, None)
        for (entity_class, entity_id), row in outgoing.items():
            self.database.table(entity_class)[entity_id] = self._copy_row(row)
        if outgoing or self._removed:
            self._relink()
        logger.debug(
            f"Committed {len(self._added)} inserts, {len(self._updated) + len(changed)} updates, "
            f"{len(self._removed)} removals"
        )
        self._clear()

    async def rollback(self):
        self._clear()

    def _working_copy(self, key: RowKey, row: Any) -> Any:
        """
        This store's copy of a committed row.

        Related rows are reached through this store's copies as well. A copy
        is refreshed when another store has committed a newer row, unless
        this store already changed it.
        """
        cached = self._copies.get(key)
        if cached is not None:
            clone, source, state = cached
            if source is row or state is None or self._state(clone) != state:
                return clone
        clone = self._copy_row(row)
        # Registered before its relationships are filled so cycles end here
        self._copies[key] = (clone, row, None)
        self._fill_relationships(clone, row, self._local)
        self._copies[key] = (clone, row, self._state(clone))
        return clone

    def _local(self, related: Any) -> Any:
        """This store's version of a related object"""
        entity_id = getattr(related, self.id_field, None)
        if entity_id is None:
            return related
        key = (type(related), entity_id)
        for source in (self._added, self._updated):
            if key in source:
                return source[key]
        row = self.database.table(type(related)).get(entity_id)
        if row is None or key in self._removed:
            return related
        return self._working_copy(key, row)

    def _copy_row(self, row: Any) -> Any:
        """Copy of the fields of ``row``; relationships still point at the same objects"""
        mapper = sa_inspect(type(row), raiseerr=False)
        if isinstance(mapper, Mapper):
            # Built the way the ORM builds loaded rows; no change or backref events fire
            clone = mapper.class_manager.new_instance()
            for info in self.registry.schema(type(row)):
                if not info.is_relationship:
                    set_committed_value(clone, info.name, getattr(row, info.name, None))
            fields_set = getattr(row, "__pydantic_fields_set__", None)
            if fields_set is not None:
                object.__setattr__(clone, "__pydantic_fields_set__", set(fields_set))
        else:
            clone = copy.copy(row)
        self._fill_relationships(clone, row)
        return clone

    def _fill_relationships(self, clone: Any, row: Any, resolve: Optional[Callable[[Any], Any]] = None):
        for info in self.registry.schema(type(row)):
            if not info.is_relationship:
                continue
            value = getattr(row, info.name, None)
            if info.is_collection:
                value = [resolve(item) if resolve else item for item in value or ()]
            elif value is not None and resolve:
                value = resolve(value)
            self._assign(clone, info.name, value)

    def _relink(self):
        """Point relationships of committed rows at the current committed rows"""
        for table in self.database.tables():
            for row in table.values():
                for info in self.registry.schema(type(row)):
                    if not info.is_relationship:
                        continue
                    value = getattr(row, info.name, None)
                    if info.is_collection:
                        items = list(value or ())
                        relinked = [item for item in map(self._committed, items) if item is not None]
                        if len(relinked) != len(items) or any(a is not b for a, b in zip(relinked, items)):
                            self._assign(row, info.name, relinked)
                    elif value is not None:
                        current = self._committed(value)
                        if current is not value:
                            self._assign(row, info.name, current)

    def _committed(self, related: Any) -> Any:
        """The committed row for a related object, None once removed"""
        entity_id = getattr(related, self.id_field, None)
        if entity_id is None:
            return related
        table = self.database.table(type(related))
        if entity_id in table:
            return table[entity_id]
        return None if (type(related), entity_id) in self._removed else related

    @staticmethod
    def _assign(row: Any, name: str, value: Any):
        if isinstance(sa_inspect(type(row), raiseerr=False), Mapper):
            set_committed_value(row, name, value)
        else:
            setattr(row, name, value)

    def _state(self, row: Any) -> Dict[str, Any]:
        """Field values of ``row``; related objects are compared by identity"""
        state = {}
        for info in self.registry.schema(type(row)):
            value = getattr(row, info.name, None)
            if info.is_relationship:
                value = tuple(map(id, value or ())) if info.is_collection else id(value)
            state[info.name] = value
        return state

    def _clear(self):
        self._added.clear()
        self._updated.clear()
        self._removed.clear()
        self._copies.clear()

    def _key(self, entity: Any) -> RowKey:
        entity_id = getattr(entity, self.id_field, None)
        if entity_id is None:
            raise InvalidError(f"{type(entity).__name__} has no {self.id_field}")
        return type(entity), entity_id

    def _id_type(self, entity_class: Type) -> Any:
        info = self.registry.schema(entity_class).get(self.id_field)
        return info.python_type if info is not None else str


# Export main components
__all__ = ["MemoryDatabase", "MemoryStore", "MemoryQuery", "matches"]
