from __future__ import annotations

from pathlib import Path
from typing import Any


class CompositionError(RuntimeError):
    """
    Fatal startup error raised while building the composition root.
    create_app() lets these propagate: there is no partial boot.
    """


class FragmentParseError(CompositionError):
    def __init__(self, path: Path, message: str, line: int | None = None, column: int | None = None):
        self.path = path
        self.line = line
        self.column = column
        where = str(path)
        if line is not None:
            where = f"{where}:{line}" + (f":{column}" if column is not None else "")
        super().__init__(f"Cannot parse configuration fragment {where}: {message}")


class NameCollisionError(CompositionError):
    def __init__(self, role: str, name: str, first: Path, second: Path):
        self.role = role
        self.name = name
        self.first = first
        self.second = second
        super().__init__(
            f"{role} entry '{name}' is defined in both {first} and {second}; "
            "mark the later definition with 'override: true' to replace it."
        )


class AmbiguousFragmentError(CompositionError):
    def __init__(self, module: str, stem: str, paths: list[Path]):
        self.module = module
        self.stem = stem
        self.paths = paths
        listed = ", ".join(str(p) for p in paths)
        super().__init__(f"Module '{module}' has more than one '{stem}' fragment: {listed}")


class EnvironmentOverrideError(CompositionError):
    def __init__(self, path: Path, role: str):
        self.path = path
        self.role = role
        super().__init__(f"{path} overrides '{role}' but its module has no base '{role}' fragment.")


class ServiceError(CompositionError):
    pass


class ServiceNotFoundError(ServiceError):
    def __init__(self, name: str, required_by: str | None = None):
        self.name = name
        self.required_by = required_by
        msg = f"Service '{name}' is not registered"
        if required_by:
            msg += f" (required by '{required_by}')"
        super().__init__(msg + ".")


class CircularReferenceError(ServiceError):
    def __init__(self, chain: list[str]):
        self.chain = chain
        super().__init__("Circular service reference: " + " -> ".join(chain))


class ServiceDefinitionError(ServiceError):
    pass


class ApiError(Exception):
    """
    Raised from request handlers; rendered as application/problem+json.
    """

    def __init__(
        self,
        status: int,
        detail: str | None = None,
        *,
        title: str | None = None,
        violations: list[dict[str, Any]] | None = None,
    ):
        super().__init__(detail or title or str(status))
        self.status = status
        self.detail = detail
        self.title = title
        self.violations = violations


class ValidationFailed(ApiError):
    def __init__(self, messages: list[str]):
        super().__init__(
            422,
            "The submitted data is invalid.",
            violations=[{"message": m} for m in messages],
        )
        self.messages = messages
