from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from app.modulith.container import ServiceContainer, import_string
from app.modulith.errors import CompositionError, ServiceDefinitionError
from app.modulith.models import Base
from app.modulith.repository import Repository

logger = logging.getLogger(__name__)


class EntityRegistry:
    """
    Explicit table of entity name -> mapped model class, built from the
    `persistence` role at startup. Importing each model is what registers its
    table on Base.metadata.
    """

    def __init__(self, container: ServiceContainer):
        self._container = container
        self._models: dict[str, type[Base]] = {}
        self._repository_names: dict[str, str] = {}
        self._default_repositories: dict[str, Repository] = {}

    @classmethod
    def from_definitions(
        cls,
        definitions: Mapping[str, Mapping[str, Any]],
        container: ServiceContainer,
    ) -> "EntityRegistry":
        reg = cls(container)
        for name, definition in definitions.items():
            reg.register(name, definition)
        return reg

    def register(self, name: str, definition: Mapping[str, Any]) -> None:
        model_path = definition.get("model")
        if not model_path:
            raise CompositionError(f"Entity '{name}' has no 'model'.")
        try:
            model = import_string(model_path)
        except ServiceDefinitionError as e:
            raise CompositionError(f"Entity '{name}': {e}") from e
        if not isinstance(model, type) or not issubclass(model, Base) or not hasattr(model, "__table__"):
            raise CompositionError(f"Entity '{name}': {model_path} is not a mapped model on the shared Base.")
        for other, other_model in self._models.items():
            if other_model is model:
                raise CompositionError(f"Entities '{other}' and '{name}' map the same model {model_path}.")

        repository = definition.get("repository")
        if repository is not None:
            if not self._container.has(repository):
                raise CompositionError(f"Entity '{name}' uses unknown repository service '{repository}'.")
            self._repository_names[name] = repository

        self._models[name] = model
        logger.debug("Entity '%s' -> %s (table %s)", name, model_path, model.__tablename__)

    def names(self) -> list[str]:
        return list(self._models)

    def model(self, name: str) -> type[Base]:
        try:
            return self._models[name]
        except KeyError:
            raise CompositionError(f"Entity '{name}' is not registered.") from None

    def repository(self, name: str) -> Repository:
        model = self.model(name)
        service = self._repository_names.get(name)
        if service is not None:
            return self._container.get(service)
        repo = self._default_repositories.get(name)
        if repo is None:
            repo = self._default_repositories[name] = Repository(model)
        return repo

    def tables(self) -> list[str]:
        return [m.__tablename__ for m in self._models.values()]
