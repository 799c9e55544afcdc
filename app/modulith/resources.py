"""
API resource exposure.

Turns the `api` role of the composition root into one Flask blueprint. Each
resource names an entity from the `persistence` role and the CRUD operations
to route for it:

    list     GET    <path>
    create   POST   <path>
    read     GET    <path>/<id>
    replace  PUT    <path>/<id>
    update   PATCH  <path>/<id>
    delete   DELETE <path>/<id>

Business rules live in a resource service (`service:` in the wiring); when
none is wired a generic EntityService is used.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any

from flask import Blueprint, current_app, request, url_for
from sqlalchemy import JSON, Integer
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from app.modulith.container import ServiceContainer
from app.modulith.db import db_session
from app.modulith.entities import EntityRegistry
from app.modulith.errors import ApiError, CompositionError, ValidationFailed
from app.modulith.repository import Repository

logger = logging.getLogger(__name__)

OPERATIONS = ("list", "create", "read", "replace", "update", "delete")
SERVICE_METHODS = ("validate", "create", "update", "delete")


def _columns(model: type) -> list:
    return list(sa_inspect(model).column_attrs)


def serialize(entity: Any, fields: list[str] | None = None) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for attr in _columns(type(entity)):
        if fields is not None and attr.key not in fields:
            continue
        value = getattr(entity, attr.key)
        if isinstance(value, (datetime, date, time)):
            value = value.isoformat()
        elif isinstance(value, (Decimal, uuid.UUID)):
            value = str(value)
        out[attr.key] = value
    return out


_KINDS = {
    bool: "a boolean",
    int: "an integer",
    float: "a number",
    Decimal: "a number",
    str: "a string",
    datetime: "an ISO 8601 datetime",
    date: "an ISO 8601 date",
    time: "an ISO 8601 time",
    uuid.UUID: "a UUID",
}


def _coerce_value(col: Any, value: Any) -> Any:
    if isinstance(col.type, JSON):
        return value
    try:
        expected = col.type.python_type
    except NotImplementedError:
        return value

    wrong = ValueError(f"must be {_KINDS.get(expected, expected.__name__)}")
    # bool is an int subclass; JSON true/false only fits boolean columns
    if isinstance(value, bool) != (expected is bool):
        raise wrong
    if isinstance(value, expected):
        return value
    if expected is float and isinstance(value, int):
        return float(value)
    if expected is Decimal and isinstance(value, (int, float, str)):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            raise wrong from None
    if expected is uuid.UUID and isinstance(value, str):
        try:
            return uuid.UUID(value)
        except ValueError:
            raise wrong from None
    if expected in (datetime, date, time) and isinstance(value, str):
        try:
            return expected.fromisoformat(value)
        except ValueError:
            raise wrong from None
    raise wrong


def coerce_payload(model: type, payload: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """
    Check JSON values against the column types of `model` and convert the ones
    JSON cannot carry natively (dates, times, decimals).
    Returns (converted payload, errors).
    """
    columns = {attr.key: attr.columns[0] for attr in _columns(model)}
    out: dict[str, Any] = {}
    errors: list[str] = []
    for key, value in payload.items():
        col = columns.get(key)
        if col is None:
            out[key] = value
            continue
        if value is None:
            if not col.nullable and not col.primary_key:
                errors.append(f"{key} must not be null.")
            out[key] = None
            continue
        try:
            out[key] = _coerce_value(col, value)
        except ValueError as e:
            errors.append(f"{key} {e}.")
    return out, errors


class EntityService:
    """Default resource service: required-column checks and plain CRUD."""

    def __init__(self, repository: Repository, model: type):
        self.repository = repository
        self.model = model

    def required_fields(self) -> list[str]:
        required = []
        for attr in _columns(self.model):
            col = attr.columns[0]
            if col.primary_key or col.nullable or col.default is not None or col.server_default is not None:
                continue
            required.append(attr.key)
        return required

    def validate(self, payload: dict[str, Any], partial: bool) -> list[str]:
        errors = []
        if not partial:
            errors.extend(f"{key} is required." for key in self.required_fields() if key not in payload)
        errors.extend(coerce_payload(self.model, payload)[1])
        return errors

    def create(self, s: Session, payload: dict[str, Any]) -> Any:
        entity = self.model(**payload)
        self.repository.save(s, entity, flush=True)
        return entity

    def update(self, s: Session, entity: Any, payload: dict[str, Any], partial: bool) -> Any:
        for key, value in payload.items():
            setattr(entity, key, value)
        self.repository.save(s, entity, flush=True)
        return entity

    def delete(self, s: Session, entity: Any) -> None:
        self.repository.remove(s, entity, flush=True)


@dataclass
class Resource:
    name: str
    entity: str
    path: str
    operations: tuple[str, ...]
    model: type
    repository: Repository
    service: Any
    read_fields: list[str] | None
    write_fields: list[str]
    items_per_page: int
    max_items_per_page: int

    @property
    def id_converter(self) -> str:
        pk = self.model.__mapper__.primary_key
        if len(pk) == 1 and isinstance(pk[0].type, Integer):
            return "int"
        return "string"


def _positive_int(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise CompositionError(f"{what} must be a positive integer.")
    return value


def build_resource(
    name: str,
    definition: Mapping[str, Any],
    entities: EntityRegistry,
    container: ServiceContainer,
    config: Mapping[str, Any],
) -> Resource:
    if "." in name or "/" in name:
        raise CompositionError(f"API resource name '{name}' must not contain '.' or '/'.")
    entity = definition.get("entity")
    if not entity:
        raise CompositionError(f"API resource '{name}' has no 'entity'.")
    if entity not in entities.names():
        raise CompositionError(f"API resource '{name}' exposes unknown entity '{entity}'.")
    model = entities.model(entity)

    path = definition.get("path") or f"/{name}"
    if not isinstance(path, str) or not path.startswith("/") or path.endswith("/"):
        raise CompositionError(f"API resource '{name}': path must start and not end with '/' ({path!r}).")

    operations = definition.get("operations", list(OPERATIONS))
    if not isinstance(operations, list) or not operations:
        raise CompositionError(f"API resource '{name}': operations must be a non-empty list.")
    unknown = [op for op in operations if op not in OPERATIONS]
    if unknown:
        raise CompositionError(f"API resource '{name}': unknown operations {unknown}.")

    columns = [a.key for a in _columns(model)]
    fields = definition.get("fields") or {}
    if not isinstance(fields, Mapping):
        raise CompositionError(f"API resource '{name}': fields must be a mapping with 'read'/'write' lists.")
    read_fields = fields.get("read")
    write_fields = fields.get("write")
    if write_fields is None:
        # primary keys and columns the database or model fills in stay read-only
        write_fields = [
            a.key
            for a in _columns(model)
            if not (a.columns[0].primary_key or a.columns[0].default is not None or a.columns[0].server_default is not None)
        ]
    for group in (read_fields or [], write_fields):
        bad = [f for f in group if f not in columns]
        if bad:
            raise CompositionError(f"API resource '{name}': {bad} are not columns of {model.__name__}.")

    service_name = definition.get("service")
    if service_name:
        if not container.has(service_name):
            raise CompositionError(f"API resource '{name}' uses unknown service '{service_name}'.")
        service = container.get(service_name)
    else:
        service = EntityService(entities.repository(entity), model)
    missing = [m for m in SERVICE_METHODS if not callable(getattr(service, m, None))]
    if missing:
        raise CompositionError(f"API resource '{name}': service lacks {', '.join(missing)}.")

    max_items = _positive_int(
        definition.get("max_items_per_page", config.get("MAX_ITEMS_PER_PAGE", 100)),
        f"API resource '{name}': max_items_per_page",
    )
    items = _positive_int(
        definition.get("items_per_page", config.get("DEFAULT_ITEMS_PER_PAGE", 30)),
        f"API resource '{name}': items_per_page",
    )

    return Resource(
        name=name,
        entity=entity,
        path=path,
        operations=tuple(op for op in OPERATIONS if op in operations),
        model=model,
        repository=entities.repository(entity),
        service=service,
        read_fields=read_fields,
        write_fields=list(write_fields),
        items_per_page=min(items, max_items),
        max_items_per_page=max_items,
    )


def _query_int(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ApiError(400, f"Query parameter '{name}' must be an integer.") from None
    if value < 1:
        raise ApiError(400, f"Query parameter '{name}' must be at least 1.")
    return value


def _json_payload(resource: Resource, replace: bool = False) -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ApiError(400, "Request body must be a JSON object.")
    rejected = sorted(set(data) - set(resource.write_fields))
    if rejected:
        raise ApiError(400, f"Unknown or read-only fields: {', '.join(rejected)}.")
    if replace:
        # PUT clears absent nullable fields; absent NOT NULL fields are left to validation
        # (required) or keep their current value (model/server defaults).
        for attr in _columns(resource.model):
            if attr.key in resource.write_fields and attr.key not in data and attr.columns[0].nullable:
                data[attr.key] = None
    payload, errors = coerce_payload(resource.model, data)
    if errors:
        raise ValidationFailed(errors)
    return payload


def _load(s: Session, resource: Resource, item_id: Any) -> Any:
    entity = s.get(resource.model, item_id)
    if entity is None:
        raise ApiError(404, f"{resource.entity} {item_id} not found.")
    return entity


def _add_routes(bp: Blueprint, resource: Resource) -> None:
    item_rule = f"{resource.path}/<{resource.id_converter}:item_id>"
    item_endpoint = f"{resource.name}_read"

    def _location(entity: Any) -> str | None:
        if "read" not in resource.operations:
            return None
        pk = sa_inspect(entity).identity
        return url_for(f"api.{item_endpoint}", item_id=pk[0])

    def list_items():
        s = db_session()
        page = _query_int("page", 1)
        per_page = _query_int("items_per_page", resource.items_per_page)
        if per_page > resource.max_items_per_page:
            raise ApiError(400, f"items_per_page must not exceed {resource.max_items_per_page}.")
        items = resource.repository.find_page(s, (page - 1) * per_page, per_page)
        return {
            "items": [serialize(i, resource.read_fields) for i in items],
            "page": page,
            "items_per_page": per_page,
            "total_items": resource.repository.count(s),
        }

    def create_item():
        s = db_session()
        payload = _json_payload(resource)
        errors = resource.service.validate(payload, False)
        if errors:
            raise ValidationFailed(errors)
        entity = resource.service.create(s, payload)
        s.commit()
        headers = {}
        location = _location(entity)
        if location:
            headers["Location"] = location
        return serialize(entity, resource.read_fields), 201, headers

    def read_item(item_id):
        s = db_session()
        return serialize(_load(s, resource, item_id), resource.read_fields)

    def _write(item_id, partial: bool):
        s = db_session()
        entity = _load(s, resource, item_id)
        payload = _json_payload(resource, replace=not partial)
        errors = resource.service.validate(payload, partial)
        if errors:
            raise ValidationFailed(errors)
        entity = resource.service.update(s, entity, payload, partial)
        s.commit()
        return serialize(entity, resource.read_fields)

    def replace_item(item_id):
        return _write(item_id, partial=False)

    def update_item(item_id):
        return _write(item_id, partial=True)

    def delete_item(item_id):
        s = db_session()
        entity = _load(s, resource, item_id)
        resource.service.delete(s, entity)
        s.commit()
        return "", 204

    table = {
        "list": (resource.path, "GET", list_items),
        "create": (resource.path, "POST", create_item),
        "read": (item_rule, "GET", read_item),
        "replace": (item_rule, "PUT", replace_item),
        "update": (item_rule, "PATCH", update_item),
        "delete": (item_rule, "DELETE", delete_item),
    }
    for op in resource.operations:
        rule, method, view = table[op]
        bp.add_url_rule(rule, endpoint=f"{resource.name}_{op}", view_func=view, methods=[method])


def build_api_blueprint(
    definitions: Mapping[str, Mapping[str, Any]],
    entities: EntityRegistry,
    container: ServiceContainer,
    config: Mapping[str, Any],
) -> tuple[Blueprint, dict[str, Resource]]:
    bp = Blueprint("api", __name__)
    resources: dict[str, Resource] = {}
    claimed: dict[str, str] = {}
    for name, definition in definitions.items():
        resource = build_resource(name, definition, entities, container, config)
        if resource.path in claimed:
            raise CompositionError(
                f"API resources '{claimed[resource.path]}' and '{name}' both use path {resource.path}."
            )
        claimed[resource.path] = name
        _add_routes(bp, resource)
        resources[name] = resource
        logger.debug("API resource '%s' at %s (%s)", name, resource.path, ", ".join(resource.operations))

    @bp.get("/")
    def entrypoint():
        prefix = current_app.config.get("API_PREFIX", "")
        return {
            "resources": {
                r.name: {
                    "entity": r.entity,
                    "path": f"{prefix}{r.path}",
                    "operations": list(r.operations),
                }
                for r in resources.values()
            }
        }

    return bp, resources
