"""
Module registry: builds the composition root from per-module wiring fragments.

Layout scanned under the modules root:

    <root>/<module>/services.yaml          service wiring
    <root>/<module>/persistence.yaml       entity wiring
    <root>/<module>/api.yaml               API resource wiring
    <root>/<module>/services_<env>.yaml    environment-specific override

Each fragment may also be written as .yml or .json. Roles are merged in the
fixed order services, persistence, api; for each role the unsuffixed fragments
come first, then the ones suffixed with the active environment. Paths are
sorted so that the same tree always produces the same composition root.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from yaml.constructor import ConstructorError

from app.modulith.errors import (
    AmbiguousFragmentError,
    CompositionError,
    EnvironmentOverrideError,
    FragmentParseError,
    NameCollisionError,
)

logger = logging.getLogger(__name__)

ROLES = ("services", "persistence", "api")
EXTENSIONS = (".yaml", ".yml", ".json")
OVERRIDE_MARKER = "override"

_ENV_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


class _FragmentLoader(yaml.SafeLoader):
    """SafeLoader that rejects a key repeated within one mapping."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            if not isinstance(key_node, yaml.ScalarNode) or key_node.tag == "tag:yaml.org,2002:merge":
                continue
            key = (key_node.tag, key_node.value)
            if key in seen:
                raise ConstructorError(
                    "while constructing a mapping",
                    node.start_mark,
                    f"duplicate key {key_node.value!r}",
                    key_node.start_mark,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _unique_object(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in pairs:
        if key in out:
            raise ValueError(f"duplicate key {key!r}")
        out[key] = value
    return out


@dataclass(frozen=True)
class Fragment:
    module: str
    role: str
    path: Path
    environment: str | None
    entries: dict[str, dict[str, Any]]


@dataclass
class Module:
    name: str
    path: Path
    fragments: list[Fragment] = field(default_factory=list)

    @property
    def roles(self) -> list[str]:
        return sorted({f.role for f in self.fragments}, key=ROLES.index)


@dataclass
class CompositionRoot:
    root: Path
    environment: str
    modules: dict[str, Module] = field(default_factory=dict)
    services: dict[str, dict[str, Any]] = field(default_factory=dict)
    persistence: dict[str, dict[str, Any]] = field(default_factory=dict)
    api: dict[str, dict[str, Any]] = field(default_factory=dict)
    # (role, name) -> module that owns the entry
    owners: dict[tuple[str, str], str] = field(default_factory=dict)
    # (role, name) -> fragments that contributed to the entry, in merge order
    sources: dict[tuple[str, str], list[Path]] = field(default_factory=dict)

    def role(self, role: str) -> dict[str, dict[str, Any]]:
        if role not in ROLES:
            raise KeyError(role)
        return getattr(self, role)

    def module_entries(self, module: str) -> dict[str, list[str]]:
        out: dict[str, list[str]] = {r: [] for r in ROLES}
        for (role, name), owner in self.owners.items():
            if owner == module:
                out[role].append(name)
        return out

    def is_empty(self) -> bool:
        return not (self.services or self.persistence or self.api)

    def to_dict(self) -> dict[str, Any]:
        """Plain structure for comparison and dumping (paths relative to the root)."""

        def rel(p: Path) -> str:
            try:
                return p.relative_to(self.root).as_posix()
            except ValueError:
                return p.as_posix()

        return {
            "environment": self.environment,
            "modules": {
                name: [rel(f.path) for f in m.fragments] for name, m in sorted(self.modules.items())
            },
            **{role: copy.deepcopy(self.role(role)) for role in ROLES},
            "sources": {
                f"{role}:{name}": [rel(p) for p in paths] for (role, name), paths in self.sources.items()
            },
        }


def load_fragment(path: Path) -> dict[str, dict[str, Any]]:
    """
    Parse a fragment file into {name: definition}. Empty files are valid and
    contribute nothing.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise FragmentParseError(path, f"not valid UTF-8 ({e.reason})") from e

    if path.suffix == ".json":
        if not text.strip():
            data = None
        else:
            try:
                data = json.loads(text, object_pairs_hook=_unique_object)
            except json.JSONDecodeError as e:
                raise FragmentParseError(path, e.msg, e.lineno, e.colno) from e
            except ValueError as e:
                raise FragmentParseError(path, str(e)) from e
    else:
        try:
            data = yaml.load(text, Loader=_FragmentLoader)
        except yaml.MarkedYAMLError as e:
            mark = e.problem_mark or e.context_mark
            line = mark.line + 1 if mark else None
            column = mark.column + 1 if mark else None
            raise FragmentParseError(path, e.problem or str(e), line, column) from e
        except yaml.YAMLError as e:
            raise FragmentParseError(path, str(e)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise FragmentParseError(path, "top level must be a mapping of names to definitions")

    entries: dict[str, dict[str, Any]] = {}
    for name, definition in data.items():
        if not isinstance(name, str) or not name.strip():
            raise FragmentParseError(path, f"invalid entry name {name!r}")
        if definition is None:
            definition = {}
        if not isinstance(definition, dict):
            raise FragmentParseError(path, f"entry '{name}' must be a mapping")
        override = definition.get(OVERRIDE_MARKER, False)
        if not isinstance(override, bool):
            raise FragmentParseError(path, f"entry '{name}': '{OVERRIDE_MARKER}' must be true or false")
        entries[name] = definition
    return entries


def discover(root: Path, role: str, environment: str | None = None) -> list[tuple[str, Path]]:
    """
    Return (module name, fragment path) pairs for one role, sorted by the
    path relative to the root.
    """
    stem = role if environment is None else f"{role}_{environment}"
    by_module: dict[str, list[Path]] = {}
    for ext in EXTENSIONS:
        for p in root.glob(f"*/{stem}{ext}"):
            module_dir = p.parent
            if module_dir.name.startswith(".") or not p.is_file():
                continue
            by_module.setdefault(module_dir.name, []).append(p)

    found: list[tuple[str, Path]] = []
    for module, paths in by_module.items():
        if len(paths) > 1:
            raise AmbiguousFragmentError(module, stem, sorted(paths, key=lambda x: x.as_posix()))
        found.append((module, paths[0]))
    found.sort(key=lambda item: item[1].relative_to(root).as_posix())
    return found


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Mappings merge key by key; any other value in `override` replaces the base value."""
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = deep_merge(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def _strip_marker(definition: dict[str, Any]) -> dict[str, Any]:
    return {k: copy.deepcopy(v) for k, v in definition.items() if k != OVERRIDE_MARKER}


def _merge(cr: CompositionRoot, fragment: Fragment) -> None:
    table = cr.role(fragment.role)
    for name, definition in fragment.entries.items():
        key = (fragment.role, name)
        explicit = bool(definition.get(OVERRIDE_MARKER, False))

        if name not in table:
            table[name] = _strip_marker(definition)
            cr.owners[key] = fragment.module
            cr.sources[key] = [fragment.path]
            continue

        # Environment fragments refine entries their own module already defined.
        if fragment.environment is not None and cr.owners[key] == fragment.module and not explicit:
            table[name] = deep_merge(table[name], _strip_marker(definition))
            cr.sources[key].append(fragment.path)
            logger.debug("%s '%s' refined by %s", fragment.role, name, fragment.path)
            continue

        if not explicit:
            raise NameCollisionError(fragment.role, name, cr.sources[key][0], fragment.path)

        logger.info(
            "%s '%s' from module '%s' replaced by %s",
            fragment.role,
            name,
            cr.owners[key],
            fragment.path,
        )
        table[name] = _strip_marker(definition)
        cr.owners[key] = fragment.module
        cr.sources[key] = [fragment.path]


def build_composition_root(
    root: str | Path,
    environment: str,
    *,
    strict_overrides: bool = False,
) -> CompositionRoot:
    """
    Scan `root` and merge every fragment into a new CompositionRoot.

    Raises a CompositionError subclass on the first problem found; nothing is
    returned in that case. A missing root yields an empty composition root.
    """
    environment = (environment or "").strip()
    if not _ENV_RE.match(environment):
        raise CompositionError(f"Invalid environment name {environment!r}")

    root = Path(root).resolve()
    cr = CompositionRoot(root=root, environment=environment)

    if not root.exists():
        logger.warning("Modules root %s does not exist; starting with no modules", root)
        return cr
    if not root.is_dir():
        raise CompositionError(f"Modules root {root} is not a directory")

    for role in ROLES:
        base_modules: set[str] = set()
        for env in (None, environment):
            for module_name, path in discover(root, role, env):
                if env is not None and module_name not in base_modules and strict_overrides:
                    raise EnvironmentOverrideError(path, role)
                fragment = Fragment(
                    module=module_name,
                    role=role,
                    path=path,
                    environment=env,
                    entries=load_fragment(path),
                )
                if env is None:
                    base_modules.add(module_name)
                module = cr.modules.get(module_name)
                if module is None:
                    module = cr.modules[module_name] = Module(name=module_name, path=path.parent)
                module.fragments.append(fragment)
                _merge(cr, fragment)
                logger.debug("Merged %s fragment %s (%d entries)", role, path, len(fragment.entries))

    cr.modules = dict(sorted(cr.modules.items()))
    for name, module in cr.modules.items():
        logger.info("Module '%s' loaded (%s)", name, ", ".join(module.roles))
    logger.info(
        "Composition root built for env=%s: %d modules, %d services, %d entities, %d resources",
        environment,
        len(cr.modules),
        len(cr.services),
        len(cr.persistence),
        len(cr.api),
    )
    return cr
