"""
FastAPI Web Adapter

Exposes a Repository over HTTP:

- ``install_exception_handlers`` maps repository errors to status codes
  (NotFound -> 404, Invalid / ModelInvalid / bad query -> 400, anything
  else -> 500 with an opaque body)
- ``QueryParams`` translates query strings into filter, sort and projection
  specs; swap it for another translator to change the URL grammar
- ``create_crud_router`` builds the add / update / delete / get / find routes

```python
from fastapi import FastAPI
from dynarepo.adapters.fastapi import create_crud_router, install_exception_handlers

app = FastAPI()
install_exception_handlers(app)
app.include_router(create_crud_router(Company, get_company_repository, prefix="/companies"))
```

Query grammar (``GET /companies?...``):
    name=Acme                 equality
    founded__gte=1990         operator suffix: eq ne gt gte lt lte contains
                              startswith endswith in notin between isnull
    country__in=DE,FR         comma-separated lists (in, notin, between)
    sort=-name,created_at     descending with a leading '-'
    fields=name,country       projection
    offset=20&limit=10        pagination
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Type

from fastapi import APIRouter, Body, Depends, FastAPI, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..core.errors import (
    InvalidError, ModelInvalidError, NotFoundError, ProjectionMismatchError,
    QueryBuildError, RepositoryError
)
from ..persistence.repository import Repository
from ..queries.filter import FilterSpec
from ..queries.paths import SchemaRegistry
from ..queries.projection import ProjectionSpec
from ..queries.sort import SortSpec

logger = logging.getLogger(__name__)

ERROR_STATUS_MAP = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ModelInvalidError: status.HTTP_400_BAD_REQUEST,
    InvalidError: status.HTTP_400_BAD_REQUEST,
    QueryBuildError: status.HTTP_400_BAD_REQUEST,
    ProjectionMismatchError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_status_code(error: Exception) -> int:
    """
    Get the HTTP status code for a given exception.

    Args:
        error: The exception instance

    Returns:
        Status of the closest mapped base class, 500 for unknown errors
    """
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS_MAP:
            return ERROR_STATUS_MAP[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _internal_error() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "InternalServerError", "message": "An unexpected error occurred"},
    )


def install_exception_handlers(app: FastAPI) -> FastAPI:
    """Register handlers that turn repository errors into JSON responses"""

    @app.exception_handler(RepositoryError)
    async def repository_error_handler(request: Request, exc: RepositoryError) -> JSONResponse:
        status_code = get_status_code(exc)
        if status_code >= 500:
            logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}", exc_info=exc)
            return _internal_error()

        logger.warning(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content={
                "error": exc.__class__.__name__,
                "message": exc.message,
                "messages": exc.messages,
                "details": jsonable_encoder(exc.details),
            },
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=exc)
        return _internal_error()

    return app


class QueryParams:
    """Translate query-string parameters into repository ``find`` arguments"""

    OPERATORS = {
        "eq": "equal",
        "ne": "not_equal",
        "gt": "greater_than",
        "gte": "greater_than_or_equal",
        "lt": "less_than",
        "lte": "less_than_or_equal",
        "contains": "contains",
        "startswith": "starts_with",
        "endswith": "ends_with",
    }
    RESERVED = ("sort", "fields", "offset", "limit", "include_deleted")

    def __init__(self, entity_class: Type, registry: Optional[SchemaRegistry] = None,
                 separator: str = "__", list_separator: str = ","):
        self.entity_class = entity_class
        self.registry = registry
        self.separator = separator
        self.list_separator = list_separator

    def translate(self, params: Mapping[str, str]) -> Dict[str, Any]:
        """Keyword arguments for :meth:`Repository.find`"""
        items = self._items(params)
        offset, limit = self.page(items)
        return {
            "filter": self.filter(items),
            "sort": self.sort(items),
            "projection": self.projection(items),
            "offset": offset,
            "limit": limit,
            "include_deleted": self._flag(items, "include_deleted"),
        }

    def filter(self, params: Any) -> Optional[FilterSpec]:
        spec = FilterSpec(self.entity_class, self.registry)
        for key, value in self._items(params):
            if key in self.RESERVED:
                continue
            path, operator = self._split_key(key)
            self._add_predicate(spec, path, operator, value)
        return spec if len(spec) else None

    def sort(self, params: Any) -> Optional[SortSpec]:
        spec = SortSpec(self.entity_class, self.registry)
        for raw in self._values(params, "sort"):
            for token in self._split(raw):
                if token.startswith("-"):
                    spec.descending(token[1:])
                else:
                    spec.ascending(token.lstrip("+"))
        return spec if len(spec) else None

    def projection(self, params: Any) -> Optional[ProjectionSpec]:
        fields = self._values(params, "fields")
        if not fields:
            return None
        spec = ProjectionSpec(self.entity_class, self.registry)
        for raw in fields:
            for token in self._split(raw):
                spec.include(token)
        return spec

    def page(self, params: Any) -> Tuple[int, int]:
        return self._integer(params, "offset"), self._integer(params, "limit")

    # Helpers
    def _add_predicate(self, spec: FilterSpec, path: str, operator: str, value: str):
        if operator in self.OPERATORS:
            getattr(spec, self.OPERATORS[operator])(path, value)
        elif operator == "in":
            spec.in_(path, self._split(value))
        elif operator == "notin":
            spec.not_in(path, self._split(value))
        elif operator == "between":
            bounds = self._split(value)
            if len(bounds) != 2:
                raise InvalidError(f"'{path}__between' needs exactly two comma-separated bounds")
            spec.between(path, bounds[0], bounds[1])
        elif operator == "isnull":
            if self._truthy(value):
                spec.is_null(path)
            else:
                spec.is_not_null(path)
        else:
            raise InvalidError(f"Unknown filter operator '{operator}'")

    def _split_key(self, key: str) -> Tuple[str, str]:
        path, sep, suffix = key.rpartition(self.separator)
        if sep and path:
            return path, suffix
        return key, "eq"

    def _split(self, raw: str) -> List[str]:
        return [token.strip() for token in raw.split(self.list_separator) if token.strip()]

    def _items(self, params: Any) -> List[Tuple[str, str]]:
        if isinstance(params, list):
            return params
        if hasattr(params, "multi_items"):
            return list(params.multi_items())
        return list(params.items())

    def _values(self, params: Any, name: str) -> List[str]:
        return [value for key, value in self._items(params) if key == name]

    def _integer(self, params: Any, name: str) -> int:
        values = self._values(params, name)
        if not values:
            return 0
        try:
            return int(values[-1])
        except ValueError:
            raise InvalidError(f"'{name}' must be an integer") from None

    def _flag(self, params: Any, name: str) -> bool:
        values = self._values(params, name)
        return bool(values) and self._truthy(values[-1])

    @staticmethod
    def _truthy(value: str) -> bool:
        return value.strip().lower() in ("1", "true", "yes", "on")


def _build_entity(entity_class: Type, payload: Dict[str, Any]) -> Any:
    try:
        return entity_class.model_validate(payload)
    except ValidationError as e:
        raise ModelInvalidError.from_validation_error(e, entity_class.__name__) from e


def create_crud_router(entity_class: Type, get_repository: Callable[..., Any], prefix: str = "",
                       tags: Optional[Iterable[str]] = None,
                       translator: Optional[QueryParams] = None) -> APIRouter:
    """
    Build CRUD routes for one entity type.

    Args:
        entity_class: The entity class served by the routes
        get_repository: FastAPI dependency returning a Repository for ``entity_class``
        prefix: Route prefix, e.g. "/companies"
        tags: OpenAPI tags (defaults to the entity class name)
        translator: Query-string translator (defaults to QueryParams over the
            repository's schema registry)

    Returns:
        The configured router
    """
    router = APIRouter(prefix=prefix, tags=list(tags) if tags else [entity_class.__name__])

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_entity(payload: Dict[str, Any] = Body(...),
                            repository: Repository = Depends(get_repository)):
        entity = await repository.add(_build_entity(entity_class, payload))
        await repository.save_changes()
        return jsonable_encoder(entity)

    @router.put("/{entity_id}")
    async def update_entity(entity_id: str, payload: Dict[str, Any] = Body(...),
                            repository: Repository = Depends(get_repository)):
        payload = {**payload, repository.id_field: entity_id}
        entity = await repository.update(_build_entity(entity_class, payload))
        await repository.save_changes()
        return jsonable_encoder(entity)

    @router.delete("/{entity_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_entity(entity_id: str, repository: Repository = Depends(get_repository)):
        await repository.delete_by_id(entity_id)
        await repository.save_changes()
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.get("/{entity_id}")
    async def get_entity(entity_id: str, repository: Repository = Depends(get_repository)):
        return jsonable_encoder(await repository.get(entity_id))

    @router.get("")
    async def find_entities(request: Request, repository: Repository = Depends(get_repository)):
        params = translator or QueryParams(entity_class, repository.registry)
        arguments = params.translate(request.query_params)
        return jsonable_encoder(await repository.find(**arguments))

    return router


# Export main components
__all__ = [
    "ERROR_STATUS_MAP", "get_status_code", "install_exception_handlers",
    "QueryParams", "create_crud_router",
]
