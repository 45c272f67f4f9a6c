"""
SQL Store - SQLAlchemy AsyncSession Backing Store

🗃️ SQL Database Storage:
Query handles wrap an SQLAlchemy ``Select`` and translate resolved query
specs into SQL:

- Predicates through relationships compile to ``has()`` (to-one) and
  ``any()`` (collections) subqueries
- Sort keys and projected values through to-one relationships use aliased
  outer joins, one join per relationship prefix
- Projections narrow the select with ``with_only_columns``
- Includes become ``selectinload`` options

The store wraps one ``AsyncSession``; the session is the unit of work.
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import aliased, selectinload
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import ClauseElement, Select
from sqlmodel import SQLModel

from ...core.errors import InvalidError, QueryBuildError
from ...queries.filter import Predicate, QueryOperator
from ...queries.paths import FieldInfo, ResolvedPath
from ...queries.sort import SortKey
from ..interface import BackingStore, EntityType, QueryHandle

logger = logging.getLogger(__name__)

Joins = Tuple[Tuple[Tuple[str, ...], Any], ...]


def _leaf_condition(column: Any, operator: QueryOperator, operand: Any):
    if operator is QueryOperator.EQUALS:
        return column.is_(None) if operand is None else column == operand
    if operator is QueryOperator.NOT_EQUALS:
        return column.is_not(None) if operand is None else column != operand
    if operator is QueryOperator.GREATER_THAN:
        return column > operand
    if operator is QueryOperator.GREATER_THAN_OR_EQUAL:
        return column >= operand
    if operator is QueryOperator.LESS_THAN:
        return column < operand
    if operator is QueryOperator.LESS_THAN_OR_EQUAL:
        return column <= operand
    if operator is QueryOperator.BETWEEN:
        low, high = operand
        return column.between(low, high)
    if operator is QueryOperator.IN:
        return column.in_(operand)
    if operator is QueryOperator.NOT_IN:
        return column.not_in(operand)
    if operator is QueryOperator.CONTAINS:
        return column.contains(operand, autoescape=True)
    if operator is QueryOperator.STARTS_WITH:
        return column.startswith(operand, autoescape=True)
    if operator is QueryOperator.ENDS_WITH:
        return column.endswith(operand, autoescape=True)
    if operator is QueryOperator.IS_NULL:
        return column.is_(None)
    if operator is QueryOperator.IS_NOT_NULL:
        return column.is_not(None)
    raise QueryBuildError(f"Unsupported operator {operator.value}")


def _relationship_condition(attribute: Any, operator: QueryOperator):
    # Only null checks reach a relationship leaf
    if operator is QueryOperator.IS_NULL:
        return attribute == None  # noqa: E711
    if operator is QueryOperator.IS_NOT_NULL:
        return attribute != None  # noqa: E711
    raise QueryBuildError(f"Operator {operator.value} cannot target a relationship")


def compile_predicate(entity_class: Type, predicate: Predicate):
    """Translate a predicate into an SQLAlchemy boolean clause"""
    if predicate.operator is QueryOperator.CUSTOM:
        if not isinstance(predicate.value, ClauseElement):
            raise QueryBuildError("Custom conditions for the SQL store must be SQLAlchemy clauses")
        return predicate.value
    return _compile_segments(entity_class, predicate.path.segments, predicate.operator, predicate.value)


def _compile_segments(owner: Type, segments: Tuple[FieldInfo, ...], operator: QueryOperator, operand: Any):
    segment, rest = segments[0], segments[1:]
    attribute = getattr(owner, segment.name)
    if not rest:
        if segment.is_relationship:
            return _relationship_condition(attribute, operator)
        return _leaf_condition(attribute, operator, operand)
    inner = _compile_segments(segment.related, rest, operator, operand)
    return attribute.any(inner) if segment.is_collection else attribute.has(inner)


@dataclass(frozen=True)
class SQLQuery(QueryHandle[EntityType]):
    """Immutable wrapper around an SQLAlchemy select"""

    store: "SQLStore"
    entity_class: Type[EntityType]
    statement: Select
    joins: Joins = ()
    projected: bool = False

    def where(self, predicate: Predicate) -> "SQLQuery[EntityType]":
        condition = compile_predicate(self.entity_class, predicate)
        return dataclasses.replace(self, statement=self.statement.where(condition))

    def order_by(self, key: SortKey) -> "SQLQuery[EntityType]":
        query, column = self._column(key.path)
        # Nulls first ascending and last descending, as in the memory store
        clause = column.desc().nulls_last() if key.descending else column.asc().nulls_first()
        return dataclasses.replace(query, statement=query.statement.order_by(clause))

    def include(self, path: ResolvedPath) -> "SQLQuery[EntityType]":
        owner = self.entity_class
        option = None
        for segment in path.segments:
            attribute = getattr(owner, segment.name)
            option = selectinload(attribute) if option is None else option.selectinload(attribute)
            owner = segment.related
        return dataclasses.replace(self, statement=self.statement.options(option))

    def project(self, paths: Sequence[ResolvedPath]) -> "SQLQuery[EntityType]":
        query = self
        columns = []
        for path in paths:
            query, column = query._column(path)
            columns.append(column)
        if not columns:
            columns = list(self.store.primary_key_columns(self.entity_class))
        statement = query.statement.with_only_columns(*columns, maintain_column_froms=True)
        return dataclasses.replace(query, statement=statement, projected=True)

    def offset(self, count: int) -> "SQLQuery[EntityType]":
        return dataclasses.replace(self, statement=self.statement.offset(count))

    def limit(self, count: int) -> "SQLQuery[EntityType]":
        return dataclasses.replace(self, statement=self.statement.limit(count))

    def _column(self, path: ResolvedPath) -> Tuple["SQLQuery[EntityType]", Any]:
        """Column for a scalar to-one path, joining related tables once per prefix"""
        statement = self.statement
        joins: Dict[Tuple[str, ...], Any] = dict(self.joins)
        owner: Any = self.entity_class
        for index, segment in enumerate(path.segments[:-1]):
            prefix = path.names[:index + 1]
            target = joins.get(prefix)
            if target is None:
                target = aliased(segment.related)
                statement = statement.outerjoin(getattr(owner, segment.name).of_type(target))
                joins[prefix] = target
            owner = target
        column = getattr(owner, path.leaf.name)
        query = dataclasses.replace(self, statement=statement, joins=tuple(joins.items()))
        return query, column

    async def all(self) -> List[Any]:
        result = await self.store.execute(self.statement)
        if self.projected:
            return [tuple(row) for row in result.all()]
        return list(result.scalars().all())

    async def first(self) -> Optional[Any]:
        rows = await self.limit(1).all()
        return rows[0] if rows else None

    async def count(self) -> int:
        subquery = self.statement.order_by(None).subquery()
        return await self.store.scalar(select(func.count()).select_from(subquery))

    async def exists(self) -> bool:
        return bool(await self.store.scalar(select(self.statement.order_by(None).exists())))


class SQLStore(BackingStore):
    """Backing store over one SQLAlchemy ``AsyncSession``"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def query(self, entity_class: Type[EntityType]) -> SQLQuery[EntityType]:
        return SQLQuery(self, entity_class, select(entity_class))

    def primary_key_columns(self, entity_class: Type) -> Tuple[Any, ...]:
        return tuple(entity_class.__mapper__.primary_key)

    async def execute(self, statement):
        try:
            return await self.session.execute(statement)
        except SQLAlchemyError as e:
            logger.error(f"Query failed: {e}")
            raise

    async def scalar(self, statement):
        try:
            return await self.session.scalar(statement)
        except SQLAlchemyError as e:
            logger.error(f"Query failed: {e}")
            raise

    async def get(self, entity_class: Type[EntityType], entity_id: Any) -> Optional[EntityType]:
        return await self.session.get(entity_class, entity_id)

    async def add(self, entity: EntityType) -> EntityType:
        self.session.add(entity)
        return entity

    async def update(self, entity: EntityType) -> EntityType:
        if entity in self.session:
            return entity
        return await self.session.merge(entity)

    async def remove(self, entity: EntityType):
        if entity not in self.session:
            entity = await self.session.merge(entity)
        await self.session.delete(entity)

    async def commit(self):
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            logger.error(f"Commit rejected by a constraint: {e.orig}")
            raise InvalidError("Changes violate a storage constraint") from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Commit failed: {e}")
            raise

    async def rollback(self):
        await self.session.rollback()


def create_engine(config) -> AsyncEngine:
    """
    Create an async engine from an SQLConfig.

    In-memory SQLite databases get a StaticPool so every session sees the
    same database.
    """
    kwargs: Dict[str, Any] = {"echo": config.echo, "connect_args": dict(config.connect_args)}
    if config.database_url.startswith("sqlite") and ":memory:" in config.database_url:
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"].setdefault("check_same_thread", False)
    elif config.pool_size is not None:
        kwargs.update(
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
        )
    logger.info(f"Creating engine for {config.database_url}")
    return create_async_engine(config.database_url, **kwargs)


def create_session_factory(source: Union[AsyncEngine, Any]) -> async_sessionmaker:
    """Session factory over an engine, or over a new engine built from an SQLConfig"""
    engine = source if isinstance(source, AsyncEngine) else create_engine(source)
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables(engine: AsyncEngine, metadata=None):
    """Create every table registered on ``metadata`` (SQLModel's by default)"""
    metadata = metadata if metadata is not None else SQLModel.metadata
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


# Export main components
__all__ = [
    "SQLStore", "SQLQuery", "compile_predicate",
    "create_engine", "create_session_factory", "create_tables",
]
