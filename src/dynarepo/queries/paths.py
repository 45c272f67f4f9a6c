"""
Property Paths - Schema Registry and Path Resolution

🧭 Runtime Field Addressing:
Turns dot-separated property paths ("company.name") into chains of field
descriptors resolved against an entity type that is only known at runtime.
Each entity type is introspected once and cached:

- SQLAlchemy / SQLModel mapped classes are described from their mapper
  (columns and relationships)
- pydantic models, dataclasses and annotated classes are described from
  their type annotations

The registry owns the case-sensitivity policy, so every spec built against
one registry resolves paths the same way.
"""

import collections.abc
import dataclasses
import logging
import types
import typing
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from functools import cached_property
from typing import Any, Dict, Iterator, Optional, Tuple, Type, Union
from uuid import UUID

from pydantic import BaseModel, TypeAdapter, ValidationError
from pydantic.errors import PydanticSchemaGenerationError
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import ColumnProperty, Mapper, RelationshipProperty

from ..core.errors import FilterBuildError, ResolutionError

logger = logging.getLogger(__name__)

PathLike = Union[str, Any]

ORDERED_TYPES = (int, float, Decimal, str, date, datetime, time, timedelta, UUID)

_COLLECTION_ORIGINS = (
    list, set, frozenset, tuple,
    collections.abc.Sequence, collections.abc.MutableSequence,
    collections.abc.Set, collections.abc.MutableSet,
    collections.abc.Collection, collections.abc.Iterable,
)


@dataclass(frozen=True)
class FieldInfo:
    """Describes one readable field of an entity type"""
    name: str
    python_type: Any
    nullable: bool = True
    related: Optional[type] = None
    is_collection: bool = False

    @property
    def is_relationship(self) -> bool:
        return self.related is not None

    @property
    def is_text(self) -> bool:
        tp = self.python_type
        return isinstance(tp, type) and issubclass(tp, str) and not issubclass(tp, Enum)

    @property
    def is_ordered(self) -> bool:
        """True when values of this field support <, <=, >, >="""
        tp = self.python_type
        if self.is_relationship or not isinstance(tp, type):
            return False
        if issubclass(tp, bool):
            return False
        if issubclass(tp, Enum) and not issubclass(tp, int):
            return False
        return issubclass(tp, ORDERED_TYPES)

    @cached_property
    def adapter(self) -> Optional[TypeAdapter]:
        try:
            return TypeAdapter(self.python_type)
        except PydanticSchemaGenerationError:
            logger.debug(f"No coercion available for field '{self.name}' of type {self.python_type!r}")
            return None

    def coerce(self, value: Any, path: str) -> Any:
        """Convert ``value`` to this field's type or raise FilterBuildError"""
        if self.is_relationship:
            raise FilterBuildError(path, value, self.related,
                                   reason="Path resolves to a related entity, not a value")
        tp = self.python_type
        if isinstance(tp, type) and isinstance(value, tp) and not (
            isinstance(value, bool) and tp is not bool
        ):
            return value
        adapter = self.adapter
        if adapter is None:
            raise FilterBuildError(path, value, tp, reason=f"No conversion to {tp!r} is available")
        try:
            return adapter.validate_python(value)
        except ValidationError as e:
            raise FilterBuildError(path, value, tp) from e


class EntitySchema:
    """Field descriptors of one entity type"""

    def __init__(self, entity_class: type, fields: Dict[str, FieldInfo], case_sensitive: bool = True):
        self.entity_class = entity_class
        self.fields = fields
        self.case_sensitive = case_sensitive
        self._folded: Dict[str, FieldInfo] = {}
        for name, info in fields.items():
            self._folded.setdefault(name.lower(), info)

    def get(self, name: str) -> Optional[FieldInfo]:
        if self.case_sensitive:
            return self.fields.get(name)
        return self._folded.get(name.lower())

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __iter__(self) -> Iterator[FieldInfo]:
        return iter(self.fields.values())

    def __repr__(self) -> str:
        return f"EntitySchema({self.entity_class.__name__}, fields={list(self.fields)})"


@dataclass(frozen=True)
class ResolvedPath:
    """A property path resolved into an ordered chain of field descriptors"""
    root: type
    raw: str
    segments: Tuple[FieldInfo, ...]

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(segment.name for segment in self.segments)

    @property
    def canonical(self) -> str:
        """Path spelled with the declared field names"""
        return ".".join(self.names)

    @property
    def leaf(self) -> FieldInfo:
        return self.segments[-1]

    @property
    def is_scalar(self) -> bool:
        return not self.leaf.is_relationship

    @property
    def crosses_collection(self) -> bool:
        return any(segment.is_collection for segment in self.segments)

    def read(self, instance: Any) -> Any:
        """Read the value at this path; a None along the way yields None"""
        value = instance
        for segment in self.segments:
            if value is None:
                return None
            value = getattr(value, segment.name, None)
        return value

    def iter_values(self, instance: Any) -> Iterator[Any]:
        """
        Yield every value reachable at this path.

        Collection segments fan out over their items. A None before the leaf
        yields nothing; a None leaf is yielded.
        """
        yield from self._walk(instance, 0)

    def _walk(self, value: Any, index: int) -> Iterator[Any]:
        if index == len(self.segments):
            yield value
            return
        if value is None:
            return
        segment = self.segments[index]
        child = getattr(value, segment.name, None)
        if segment.is_collection and index < len(self.segments) - 1:
            for item in child or ():
                yield from self._walk(item, index + 1)
        else:
            yield from self._walk(child, index + 1)

    def __str__(self) -> str:
        return self.raw


def as_path(path: PathLike, root: Optional[type] = None) -> str:
    """
    Accept a path string or an ORM attribute such as ``Company.name``.

    An attribute must belong to ``root`` or one of its bases when ``root`` is given.
    """
    if isinstance(path, str):
        return path
    key = getattr(path, "key", None)
    if isinstance(key, str):
        owner = getattr(path, "class_", None)
        if root is not None and isinstance(owner, type) and not issubclass(root, owner):
            raise ResolutionError(key, root, f"{owner.__name__}.{key}",
                                  reason=f"Attribute of '{owner.__name__}' cannot address '{root.__name__}'")
        return key
    raise ResolutionError(str(path), None, repr(path),
                          reason="Property path must be a string or a mapped attribute")


def _unwrap_optional(annotation: Any) -> Tuple[Any, bool]:
    origin = typing.get_origin(annotation)
    if origin is typing.Annotated:
        return _unwrap_optional(typing.get_args(annotation)[0])
    if origin is Union or origin is types.UnionType:
        args = typing.get_args(annotation)
        members = [arg for arg in args if arg is not type(None)]
        nullable = len(members) < len(args)
        if len(members) == 1:
            inner, _ = _unwrap_optional(members[0])
            return inner, nullable
        return annotation, nullable
    return annotation, False


def _is_entity_type(tp: Any) -> bool:
    if not isinstance(tp, type):
        return False
    if issubclass(tp, BaseModel) or dataclasses.is_dataclass(tp):
        return True
    return sa_inspect(tp, raiseerr=False) is not None


def _field_from_annotation(name: str, annotation: Any) -> FieldInfo:
    inner, nullable = _unwrap_optional(annotation)
    origin = typing.get_origin(inner)
    if origin in _COLLECTION_ORIGINS:
        args = [arg for arg in typing.get_args(inner) if arg is not Ellipsis]
        if len(args) == 1 and _is_entity_type(args[0]):
            return FieldInfo(name, inner, nullable, related=args[0], is_collection=True)
        return FieldInfo(name, inner, nullable)
    if _is_entity_type(inner):
        return FieldInfo(name, inner, nullable, related=inner)
    return FieldInfo(name, inner, nullable)


class SchemaRegistry:
    """
    Cache of entity schemas and resolved paths.

    Resolution is deterministic: the same (type, path) pair always yields
    the same ResolvedPath object.
    """

    def __init__(self, case_sensitive: bool = True):
        self.case_sensitive = case_sensitive
        self._schemas: Dict[type, EntitySchema] = {}
        self._paths: Dict[Tuple[type, str], ResolvedPath] = {}

    @classmethod
    def from_config(cls, config) -> "SchemaRegistry":
        return cls(case_sensitive=config.case_sensitive)

    def schema(self, entity_class: Type) -> EntitySchema:
        schema = self._schemas.get(entity_class)
        if schema is None:
            schema = EntitySchema(entity_class, self._describe(entity_class), self.case_sensitive)
            self._schemas[entity_class] = schema
            logger.debug(f"Registered schema for {entity_class.__name__}: {list(schema.fields)}")
        return schema

    def resolve(self, entity_class: Type, path: PathLike) -> ResolvedPath:
        raw = as_path(path, entity_class)
        key = (entity_class, raw)
        cached = self._paths.get(key)
        if cached is not None:
            return cached

        if not raw or not raw.strip():
            raise ResolutionError(raw, entity_class, raw, reason="Property path cannot be empty")

        segments = []
        current: Optional[type] = entity_class
        previous: Optional[FieldInfo] = None
        for part in raw.split("."):
            if not part:
                raise ResolutionError(part, current, raw, reason="Empty path segment")
            if current is None:
                raise ResolutionError(
                    part, previous.python_type, raw,
                    reason=f"Property '{part}' cannot be read from scalar field '{previous.name}'",
                )
            try:
                schema = self.schema(current)
            except NameError as e:
                raise ResolutionError(
                    part, current, raw,
                    reason=f"Annotations of '{current.__name__}' cannot be resolved ({e})",
                ) from e
            info = schema.get(part)
            if info is None:
                raise ResolutionError(part, current, raw)
            segments.append(info)
            previous = info
            current = info.related

        resolved = ResolvedPath(entity_class, raw, tuple(segments))
        self._paths[key] = resolved
        return resolved

    def clear(self):
        self._schemas.clear()
        self._paths.clear()

    def _describe(self, entity_class: Type) -> Dict[str, FieldInfo]:
        mapper = sa_inspect(entity_class, raiseerr=False)
        if isinstance(mapper, Mapper):
            return self._describe_mapped(entity_class, mapper)
        return self._describe_annotated(entity_class)

    def _describe_mapped(self, entity_class: Type, mapper: Mapper) -> Dict[str, FieldInfo]:
        annotations = {
            name: field.annotation
            for name, field in getattr(entity_class, "model_fields", {}).items()
        }
        fields: Dict[str, FieldInfo] = {}
        for prop in mapper.attrs:
            if isinstance(prop, RelationshipProperty):
                target = prop.mapper.class_
                fields[prop.key] = FieldInfo(
                    prop.key, target, nullable=True, related=target, is_collection=bool(prop.uselist)
                )
            elif isinstance(prop, ColumnProperty):
                column = prop.columns[0]
                annotation = annotations.get(prop.key)
                if annotation is None:
                    try:
                        annotation = column.type.python_type
                    except NotImplementedError:
                        annotation = Any
                python_type, nullable = _unwrap_optional(annotation)
                fields[prop.key] = FieldInfo(
                    prop.key, python_type, nullable or bool(getattr(column, "nullable", True))
                )
        return fields

    def _describe_annotated(self, entity_class: Type) -> Dict[str, FieldInfo]:
        if issubclass(entity_class, BaseModel):
            hints = {name: field.annotation for name, field in entity_class.model_fields.items()}
        else:
            hints = typing.get_type_hints(entity_class)
        fields: Dict[str, FieldInfo] = {}
        for name, annotation in hints.items():
            if name.startswith("_") or typing.get_origin(annotation) is typing.ClassVar:
                continue
            fields[name] = _field_from_annotation(name, annotation)
        return fields


default_registry = SchemaRegistry()


def resolve(entity_class: Type, path: PathLike, registry: Optional[SchemaRegistry] = None) -> ResolvedPath:
    """Resolve ``path`` against ``entity_class`` with the given (or default) registry"""
    return (registry or default_registry).resolve(entity_class, path)


# Export main components
__all__ = [
    "FieldInfo", "EntitySchema", "ResolvedPath", "SchemaRegistry",
    "default_registry", "resolve", "as_path", "ORDERED_TYPES",
]
