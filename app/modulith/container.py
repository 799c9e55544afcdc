from __future__ import annotations

import importlib
import logging
import re
from collections.abc import Mapping
from typing import Any

from dependency_injector import containers, providers

from app.modulith.errors import (
    CircularReferenceError,
    ServiceDefinitionError,
    ServiceNotFoundError,
)

logger = logging.getLogger(__name__)

_PARAM_RE = re.compile(r"^%([A-Za-z_][A-Za-z0-9_.]*)%$")


def import_string(path: str) -> Any:
    """
    Import "package.module:attr" (or "package.module.attr").
    """
    if not isinstance(path, str) or not path.strip():
        raise ServiceDefinitionError(f"Invalid import path {path!r}")
    if ":" in path:
        module_name, _, attr = path.partition(":")
    else:
        module_name, _, attr = path.rpartition(".")
    if not module_name or not attr:
        raise ServiceDefinitionError(f"Invalid import path {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ServiceDefinitionError(f"Cannot import '{module_name}' for {path!r}: {e}") from e
    obj: Any = module
    for part in attr.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise ServiceDefinitionError(f"'{module_name}' has no attribute '{attr}' ({path!r})") from e
    return obj


class ServiceContainer:
    """
    Turns the `services` role of the composition root into a
    dependency_injector DynamicContainer.

    Definition keys:
      factory    "pkg.mod:callable" returning the service (usually a class)
      arguments  keyword arguments; "@name" references another service,
                 "%KEY%" a config parameter, "@@text" a literal "@text"
      shared     Singleton provider when true (default), Factory when false

    Providers are built on first use; validate() builds all of them up front
    so bad wiring stops startup before anything is instantiated.
    """

    def __init__(self, definitions: Mapping[str, Mapping[str, Any]], parameters: Mapping[str, Any] | None = None):
        self._definitions = dict(definitions)
        self._parameters = dict(parameters or {})
        self._building: list[str] = []
        self.providers = containers.DynamicContainer()

    def names(self) -> list[str]:
        return list(self._definitions)

    def has(self, name: str) -> bool:
        return name in self._definitions

    def definition(self, name: str) -> Mapping[str, Any]:
        try:
            return self._definitions[name]
        except KeyError:
            raise ServiceNotFoundError(name) from None

    def set(self, name: str, instance: Any) -> None:
        """Register an already-built instance (tests, framework objects)."""
        existing = self.providers.providers.get(name)
        if existing is not None:
            existing.override(providers.Object(instance))
            return
        self._register(name, providers.Object(instance))
        self._definitions.setdefault(name, {"factory": None})

    def provider(self, name: str) -> providers.Provider:
        existing = self.providers.providers.get(name)
        if existing is not None:
            return existing
        definition = self.definition(name)

        if name in self._building:
            start = self._building.index(name)
            raise CircularReferenceError(self._building[start:] + [name])

        self._building.append(name)
        try:
            provider = self._build(name, definition)
        finally:
            self._building.pop()

        self._register(name, provider)
        return provider

    def get(self, name: str) -> Any:
        return self.provider(name)()

    def validate(self) -> None:
        """
        Build every provider without calling any: factories must import and be
        callable, references and parameters must exist, no cycles.
        """
        for name in self._definitions:
            self.provider(name)

    def _register(self, name: str, provider: providers.Provider) -> None:
        if hasattr(containers.DynamicContainer, name):
            raise ServiceDefinitionError(f"Service name '{name}' is reserved by the container.")
        self.providers.set_provider(name, provider)

    def _build(self, name: str, definition: Mapping[str, Any]) -> providers.Provider:
        factory_path = definition.get("factory")
        if not factory_path:
            raise ServiceDefinitionError(f"Service '{name}' has no factory.")
        factory = import_string(factory_path)
        if not callable(factory):
            raise ServiceDefinitionError(f"Factory of service '{name}' ({factory_path}) is not callable.")

        shared = definition.get("shared", True)
        if not isinstance(shared, bool):
            raise ServiceDefinitionError(f"Service '{name}': 'shared' must be true or false (got {shared!r}).")

        arguments = definition.get("arguments") or {}
        if not isinstance(arguments, Mapping):
            raise ServiceDefinitionError(f"Arguments of service '{name}' must be a mapping.")
        kwargs = {k: self._inject(v, name) for k, v in arguments.items()}

        provider_cls = providers.Singleton if shared else providers.Factory
        logger.debug("Service '%s' -> %s(%s)", name, provider_cls.__name__, factory_path)
        return provider_cls(factory, **kwargs)

    def _inject(self, value: Any, owner: str) -> Any:
        if isinstance(value, Mapping):
            return providers.Dict({k: self._inject(v, owner) for k, v in value.items()})
        if isinstance(value, list):
            return providers.List(*(self._inject(v, owner) for v in value))
        if isinstance(value, str):
            ref = _reference(value)
            if ref is not None:
                if ref not in self._definitions:
                    raise ServiceNotFoundError(ref, required_by=owner)
                return self.provider(ref)
            if value.startswith("@@"):
                return value[1:]
            param = _parameter(value)
            if param is not None:
                if param not in self._parameters:
                    raise ServiceDefinitionError(f"Service '{owner}' uses unknown parameter '%{param}%'.")
                return providers.Object(self._parameters[param])
        return value


def _reference(value: Any) -> str | None:
    if isinstance(value, str) and value.startswith("@") and not value.startswith("@@") and len(value) > 1:
        return value[1:]
    return None


def _parameter(value: Any) -> str | None:
    if isinstance(value, str):
        m = _PARAM_RE.match(value)
        if m:
            return m.group(1)
    return None
