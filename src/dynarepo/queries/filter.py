"""
Filter Spec - Composable Query Predicates

🔎 Eagerly Validated Filtering:
A FilterSpec is an ordered list of predicates over one entity type,
combined with AND semantics. Every builder method resolves its path and
coerces its operand immediately, so a malformed filter fails while it is
being built instead of when the backing store executes it.

Example:
    spec = (FilterSpec(Employee)
            .equal("company.name", "Acme")
            .greater_than_or_equal("salary", "50000")
            .contains("email", "@acme"))
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, List, Optional, Tuple, Type, TypeVar, TYPE_CHECKING

from ..core.errors import FilterBuildError
from .paths import PathLike, ResolvedPath, SchemaRegistry, default_registry

if TYPE_CHECKING:
    from ..persistence.interface import QueryHandle

logger = logging.getLogger(__name__)

EntityType = TypeVar("EntityType")


class QueryOperator(Enum):
    """Query operators for filtering"""
    EQUALS = "eq"
    NOT_EQUALS = "ne"
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUAL = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUAL = "lte"
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    CUSTOM = "custom"


TEXT_OPERATORS = (QueryOperator.CONTAINS, QueryOperator.STARTS_WITH, QueryOperator.ENDS_WITH)
NULL_OPERATORS = (QueryOperator.IS_NULL, QueryOperator.IS_NOT_NULL)


@dataclass(frozen=True)
class Predicate:
    """
    One filter condition.

    ``value`` holds the coerced operand: a single value, a ``(low, high)``
    pair for BETWEEN, a tuple for IN / NOT_IN, or a backend-native condition
    for CUSTOM (in which case ``path`` is None).
    """
    operator: QueryOperator
    path: Optional[ResolvedPath]
    value: Any = None

    def __str__(self) -> str:
        if self.operator is QueryOperator.CUSTOM:
            return f"custom({self.value!r})"
        return f"{self.path.raw} {self.operator.value} {self.value!r}"


class FilterSpec(Generic[EntityType]):
    """Ordered, AND-combined predicates over ``entity_class``"""

    def __init__(self, entity_class: Type[EntityType], registry: Optional[SchemaRegistry] = None):
        self.entity_class = entity_class
        self.registry = registry or default_registry
        self._predicates: List[Predicate] = []

    @property
    def predicates(self) -> Tuple[Predicate, ...]:
        return tuple(self._predicates)

    def __len__(self) -> int:
        return len(self._predicates)

    def __iter__(self):
        return iter(self._predicates)

    def __repr__(self) -> str:
        inner = " AND ".join(str(p) for p in self._predicates) or "<no constraint>"
        return f"FilterSpec({self.entity_class.__name__}: {inner})"

    # Equality
    def equal(self, path: PathLike, value: Any) -> "FilterSpec[EntityType]":
        """``field == value``; a None value means IS NULL"""
        return self._equality(QueryOperator.EQUALS, path, value)

    def not_equal(self, path: PathLike, value: Any) -> "FilterSpec[EntityType]":
        """``field != value``; a None value means IS NOT NULL"""
        return self._equality(QueryOperator.NOT_EQUALS, path, value)

    # Ordering comparisons
    def greater_than(self, path: PathLike, value: Any) -> "FilterSpec[EntityType]":
        return self._comparison(QueryOperator.GREATER_THAN, path, value)

    def greater_than_or_equal(self, path: PathLike, value: Any) -> "FilterSpec[EntityType]":
        return self._comparison(QueryOperator.GREATER_THAN_OR_EQUAL, path, value)

    def less_than(self, path: PathLike, value: Any) -> "FilterSpec[EntityType]":
        return self._comparison(QueryOperator.LESS_THAN, path, value)

    def less_than_or_equal(self, path: PathLike, value: Any) -> "FilterSpec[EntityType]":
        return self._comparison(QueryOperator.LESS_THAN_OR_EQUAL, path, value)

    def between(self, path: PathLike, low: Any, high: Any) -> "FilterSpec[EntityType]":
        """Inclusive range: ``low <= field <= high``"""
        resolved = self._value_path(path, QueryOperator.BETWEEN, (low, high))
        if low is None or high is None:
            raise FilterBuildError(resolved.raw, (low, high), resolved.leaf.python_type,
                                   reason="Both bounds are required for 'between'")
        self._require_ordered(resolved, QueryOperator.BETWEEN, (low, high))
        bounds = (resolved.leaf.coerce(low, resolved.raw), resolved.leaf.coerce(high, resolved.raw))
        return self._add(QueryOperator.BETWEEN, resolved, bounds)

    # Text matching
    def contains(self, path: PathLike, text: Optional[str]) -> "FilterSpec[EntityType]":
        return self._text(QueryOperator.CONTAINS, path, text)

    def starts_with(self, path: PathLike, text: Optional[str]) -> "FilterSpec[EntityType]":
        return self._text(QueryOperator.STARTS_WITH, path, text)

    def ends_with(self, path: PathLike, text: Optional[str]) -> "FilterSpec[EntityType]":
        return self._text(QueryOperator.ENDS_WITH, path, text)

    # Membership
    def in_(self, path: PathLike, values: Iterable) -> "FilterSpec[EntityType]":
        """Membership test; an empty collection adds no constraint"""
        return self._membership(QueryOperator.IN, path, values)

    def not_in(self, path: PathLike, values: Iterable) -> "FilterSpec[EntityType]":
        """Negated membership test; an empty collection adds no constraint"""
        return self._membership(QueryOperator.NOT_IN, path, values)

    # Null checks
    def is_null(self, path: PathLike) -> "FilterSpec[EntityType]":
        return self._null_check(QueryOperator.IS_NULL, path)

    def is_not_null(self, path: PathLike) -> "FilterSpec[EntityType]":
        return self._null_check(QueryOperator.IS_NOT_NULL, path)

    def where(self, condition: Any) -> "FilterSpec[EntityType]":
        """
        Add a pre-built, backend-native condition.

        The SQL store expects an SQLAlchemy boolean clause, the memory store
        a callable taking the entity and returning a bool.
        """
        if condition is None:
            raise FilterBuildError("<custom>", condition, object, reason="Condition cannot be None")
        return self._add(QueryOperator.CUSTOM, None, condition)

    def apply(self, query: "QueryHandle") -> "QueryHandle":
        """Fold every predicate onto ``query`` in insertion order"""
        for predicate in self._predicates:
            query = query.where(predicate)
        return query

    # Builders
    def _resolve(self, path: PathLike) -> ResolvedPath:
        return self.registry.resolve(self.entity_class, path)

    def _add(self, operator: QueryOperator, path: Optional[ResolvedPath], value: Any = None) -> "FilterSpec[EntityType]":
        self._predicates.append(Predicate(operator, path, value))
        return self

    def _value_path(self, path: PathLike, operator: QueryOperator, value: Any) -> ResolvedPath:
        resolved = self._resolve(path)
        leaf = resolved.leaf
        if leaf.is_relationship:
            raise FilterBuildError(resolved.raw, value, leaf.related,
                                   reason=f"Operator '{operator.value}' needs a value field, not a related entity")
        return resolved

    def _require_ordered(self, resolved: ResolvedPath, operator: QueryOperator, value: Any):
        if not resolved.leaf.is_ordered:
            raise FilterBuildError(resolved.raw, value, resolved.leaf.python_type,
                                   reason=f"Operator '{operator.value}' needs an ordered field type")

    def _equality(self, operator: QueryOperator, path: PathLike, value: Any) -> "FilterSpec[EntityType]":
        resolved = self._value_path(path, operator, value)
        operand = None if value is None else resolved.leaf.coerce(value, resolved.raw)
        return self._add(operator, resolved, operand)

    def _comparison(self, operator: QueryOperator, path: PathLike, value: Any) -> "FilterSpec[EntityType]":
        resolved = self._value_path(path, operator, value)
        if value is None:
            raise FilterBuildError(resolved.raw, value, resolved.leaf.python_type,
                                   reason=f"A value is required for operator '{operator.value}'")
        self._require_ordered(resolved, operator, value)
        return self._add(operator, resolved, resolved.leaf.coerce(value, resolved.raw))

    def _text(self, operator: QueryOperator, path: PathLike, text: Optional[str]) -> "FilterSpec[EntityType]":
        resolved = self._value_path(path, operator, text)
        if not resolved.leaf.is_text:
            raise FilterBuildError(resolved.raw, text, resolved.leaf.python_type,
                                   reason=f"Operator '{operator.value}' needs a text field")
        if text is None or text == "":
            logger.debug(f"Skipping empty '{operator.value}' filter on '{resolved.raw}'")
            return self
        if not isinstance(text, str):
            raise FilterBuildError(resolved.raw, text, str,
                                   reason=f"Operator '{operator.value}' needs a text operand")
        return self._add(operator, resolved, text)

    def _membership(self, operator: QueryOperator, path: PathLike, values: Iterable) -> "FilterSpec[EntityType]":
        resolved = self._value_path(path, operator, values)
        if values is None or isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
            raise FilterBuildError(resolved.raw, values, resolved.leaf.python_type,
                                   reason=f"Operator '{operator.value}' needs a collection of values")
        items = list(values)
        if not items:
            logger.debug(f"Skipping empty '{operator.value}' filter on '{resolved.raw}'")
            return self
        coerced = tuple(resolved.leaf.coerce(item, resolved.raw) for item in items)
        return self._add(operator, resolved, coerced)

    def _null_check(self, operator: QueryOperator, path: PathLike) -> "FilterSpec[EntityType]":
        resolved = self._resolve(path)
        if resolved.leaf.is_collection and resolved.leaf.is_relationship:
            raise FilterBuildError(resolved.raw, None, resolved.leaf.related,
                                   reason=f"Operator '{operator.value}' cannot target a collection")
        return self._add(operator, resolved)


# Export main components
__all__ = ["FilterSpec", "Predicate", "QueryOperator", "TEXT_OPERATORS", "NULL_OPERATORS"]
