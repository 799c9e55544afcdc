"""Tests for module discovery and composition-root merging."""
import shutil

import pytest

from app.modulith.errors import (
    AmbiguousFragmentError,
    CompositionError,
    EnvironmentOverrideError,
    FragmentParseError,
    NameCollisionError,
)
from app.modulith.registry import ROLES, build_composition_root, deep_merge, discover, load_fragment


def _write(root, rel, text):
    p = root / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    return p


@pytest.fixture()
def tree(tmp_path):
    root = tmp_path / "modules"
    _write(
        root,
        "billing/services.yaml",
        "billing.invoicer:\n  factory: pkg.billing:Invoicer\n  arguments:\n    currency: EUR\n",
    )
    _write(root, "billing/persistence.yaml", "Invoice:\n  model: pkg.billing:Invoice\n")
    _write(root, "billing/api.yaml", "invoices:\n  entity: Invoice\n  operations: [list, read]\n")
    _write(root, "accounts/services.yml", "accounts.manager:\n  factory: pkg.accounts:Manager\n")
    _write(root, "accounts/persistence.json", '{"Account": {"model": "pkg.accounts:Account"}}')
    return root


def test_missing_root_is_empty(tmp_path):
    cr = build_composition_root(tmp_path / "does-not-exist", "dev")
    assert cr.is_empty()
    assert cr.modules == {}
    assert cr.services == {} and cr.persistence == {} and cr.api == {}


def test_empty_root_dir_is_empty(tmp_path):
    root = tmp_path / "modules"
    root.mkdir()
    (root / "not_a_module").mkdir()
    cr = build_composition_root(root, "dev")
    assert cr.is_empty()
    assert cr.modules == {}


def test_root_that_is_a_file_fails(tmp_path):
    f = tmp_path / "modules"
    f.write_text("", encoding="utf-8")
    with pytest.raises(CompositionError):
        build_composition_root(f, "dev")


def test_invalid_environment_name(tree):
    with pytest.raises(CompositionError):
        build_composition_root(tree, "")
    with pytest.raises(CompositionError):
        build_composition_root(tree, "../prod")


def test_loads_all_roles_and_formats(tree):
    cr = build_composition_root(tree, "dev")
    assert list(cr.modules) == ["accounts", "billing"]
    assert cr.services["billing.invoicer"]["arguments"] == {"currency": "EUR"}
    assert cr.services["accounts.manager"] == {"factory": "pkg.accounts:Manager"}
    assert set(cr.persistence) == {"Invoice", "Account"}
    assert cr.api["invoices"]["operations"] == ["list", "read"]
    assert cr.modules["billing"].roles == list(ROLES)
    assert cr.modules["accounts"].roles == ["services", "persistence"]


def test_entries_follow_path_order(tree):
    cr = build_composition_root(tree, "dev")
    # accounts/ sorts before billing/ regardless of creation order
    assert list(cr.services) == ["accounts.manager", "billing.invoicer"]


def test_determinism(tree):
    first = build_composition_root(tree, "dev").to_dict()
    second = build_composition_root(tree, "dev").to_dict()
    assert first == second


def test_additivity(tree):
    before = build_composition_root(tree, "dev").to_dict()

    _write(tree, "shipping/services.yaml", "shipping.rates:\n  factory: pkg.shipping:Rates\n")
    _write(tree, "shipping/api.yaml", "shipments:\n  entity: Shipment\n")
    after = build_composition_root(tree, "dev")

    for role in ROLES:
        for name, definition in before[role].items():
            assert after.role(role)[name] == definition
    assert set(after.services) - set(before["services"]) == {"shipping.rates"}
    assert set(after.api) - set(before["api"]) == {"shipments"}
    assert after.module_entries("shipping") == {"services": ["shipping.rates"], "persistence": [], "api": ["shipments"]}


def test_removal_restores_previous_root(tree):
    before = build_composition_root(tree, "dev").to_dict()
    _write(tree, "shipping/services.yaml", "shipping.rates:\n  factory: pkg.shipping:Rates\n")
    assert build_composition_root(tree, "dev").to_dict() != before

    shutil.rmtree(tree / "shipping")
    assert build_composition_root(tree, "dev").to_dict() == before


def test_environment_override_scenario(tmp_path):
    root = tmp_path / "modules"
    _write(
        root,
        "OrderModule/services.yaml",
        "order.processor:\n"
        "  factory: pkg.orders:Processor\n"
        "  arguments:\n"
        "    retries: 1\n"
        "    queue: orders\n"
        "order.notifier:\n"
        "  factory: pkg.orders:Notifier\n",
    )
    _write(
        root,
        "OrderModule/services_prod.yaml",
        "order.processor:\n"
        "  arguments:\n"
        "    retries: 5\n"
        "order.auditor:\n"
        "  factory: pkg.orders:Auditor\n",
    )

    prod = build_composition_root(root, "prod")
    assert prod.services["order.processor"] == {
        "factory": "pkg.orders:Processor",
        "arguments": {"retries": 5, "queue": "orders"},
    }
    assert set(prod.services) == {"order.processor", "order.notifier", "order.auditor"}
    assert [p.name for p in prod.sources[("services", "order.processor")]] == ["services.yaml", "services_prod.yaml"]

    staging = build_composition_root(root, "staging")
    assert staging.services == {
        "order.processor": {"factory": "pkg.orders:Processor", "arguments": {"retries": 1, "queue": "orders"}},
        "order.notifier": {"factory": "pkg.orders:Notifier"},
    }


def test_environment_fragment_is_not_a_base_fragment(tmp_path):
    root = tmp_path / "modules"
    _write(root, "orders/services_prod.yaml", "order.auditor:\n  factory: pkg.orders:Auditor\n")
    cr = build_composition_root(root, "dev")
    assert cr.is_empty()
    assert cr.modules == {}


def test_environment_without_base_allowed_by_default(tmp_path):
    root = tmp_path / "modules"
    _write(root, "orders/services_prod.yaml", "order.auditor:\n  factory: pkg.orders:Auditor\n")
    cr = build_composition_root(root, "prod")
    assert cr.services == {"order.auditor": {"factory": "pkg.orders:Auditor"}}


def test_environment_without_base_strict(tmp_path):
    root = tmp_path / "modules"
    _write(root, "orders/services_prod.yaml", "order.auditor:\n  factory: pkg.orders:Auditor\n")
    with pytest.raises(EnvironmentOverrideError) as exc:
        build_composition_root(root, "prod", strict_overrides=True)
    assert exc.value.role == "services"
    assert exc.value.path.name == "services_prod.yaml"


def test_collision_across_modules(tree):
    _write(tree, "zeta/services.yaml", "billing.invoicer:\n  factory: pkg.zeta:Other\n")
    with pytest.raises(NameCollisionError) as exc:
        build_composition_root(tree, "dev")
    err = exc.value
    assert err.name == "billing.invoicer"
    assert err.role == "services"
    assert err.first == (tree / "billing" / "services.yaml").resolve()
    assert err.second == (tree / "zeta" / "services.yaml").resolve()
    assert "billing/services.yaml" in str(err) and "zeta/services.yaml" in str(err)


def test_same_name_in_different_roles_is_fine(tree):
    _write(tree, "zeta/api.yaml", "billing.invoicer:\n  entity: Invoice\n")
    cr = build_composition_root(tree, "dev")
    assert "billing.invoicer" in cr.services and "billing.invoicer" in cr.api


def test_environment_fragment_cannot_touch_other_modules(tree):
    _write(tree, "zeta/services_prod.yaml", "billing.invoicer:\n  arguments:\n    currency: USD\n")
    assert build_composition_root(tree, "dev").services["billing.invoicer"]["arguments"] == {"currency": "EUR"}
    with pytest.raises(NameCollisionError):
        build_composition_root(tree, "prod")


def test_explicit_override_marker(tree):
    _write(
        tree,
        "zeta/services.yaml",
        "billing.invoicer:\n  override: true\n  factory: pkg.zeta:BetterInvoicer\n",
    )
    cr = build_composition_root(tree, "dev")
    assert cr.services["billing.invoicer"] == {"factory": "pkg.zeta:BetterInvoicer"}
    assert cr.owners[("services", "billing.invoicer")] == "zeta"
    assert "billing.invoicer" not in cr.module_entries("billing")["services"]


def test_explicit_override_in_environment_fragment_replaces_entry(tmp_path):
    root = tmp_path / "modules"
    _write(
        root,
        "orders/services.yaml",
        "order.processor:\n"
        "  factory: pkg.orders:Processor\n"
        "  shared: false\n"
        "  arguments:\n"
        "    retries: 1\n"
        "    queue: orders\n",
    )
    _write(
        root,
        "orders/services_prod.yaml",
        "order.processor:\n"
        "  override: true\n"
        "  factory: pkg.orders:FastProcessor\n"
        "  arguments:\n"
        "    retries: 5\n",
    )

    cr = build_composition_root(root, "prod")
    assert cr.services["order.processor"] == {
        "factory": "pkg.orders:FastProcessor",
        "arguments": {"retries": 5},
    }
    assert [p.name for p in cr.sources[("services", "order.processor")]] == ["services_prod.yaml"]
    assert cr.owners[("services", "order.processor")] == "orders"


def test_override_marker_must_be_boolean(tmp_path):
    root = tmp_path / "modules"
    _write(root, "a/services.yaml", "x:\n  override: sometimes\n")
    with pytest.raises(FragmentParseError):
        build_composition_root(root, "dev")


def test_yaml_parse_error_reports_position(tmp_path):
    root = tmp_path / "modules"
    bad = _write(root, "broken/services.yaml", "svc:\n  factory: [unterminated\n")
    with pytest.raises(FragmentParseError) as exc:
        build_composition_root(root, "dev")
    assert exc.value.path == bad.resolve()
    assert exc.value.line is not None
    assert str(bad.resolve()) in str(exc.value)


def test_json_parse_error_reports_position(tmp_path):
    root = tmp_path / "modules"
    _write(root, "broken/persistence.json", '{"Thing": {"model": "x:Y"},}')
    with pytest.raises(FragmentParseError) as exc:
        build_composition_root(root, "dev")
    assert exc.value.line == 1
    assert exc.value.column is not None


def test_duplicate_yaml_key_is_a_parse_error(tmp_path):
    root = tmp_path / "modules"
    _write(
        root,
        "a/services.yaml",
        "svc:\n  factory: pkg.a:First\nother:\n  factory: pkg.a:Other\nsvc:\n  factory: pkg.a:Second\n",
    )
    with pytest.raises(FragmentParseError) as exc:
        build_composition_root(root, "dev")
    assert exc.value.line == 5
    assert "svc" in str(exc.value)


def test_duplicate_key_inside_a_definition(tmp_path):
    root = tmp_path / "modules"
    _write(root, "a/services.yaml", "svc:\n  factory: pkg.a:First\n  factory: pkg.a:Second\n")
    with pytest.raises(FragmentParseError) as exc:
        build_composition_root(root, "dev")
    assert exc.value.line == 3


def test_yaml_merge_keys_are_not_duplicates(tmp_path):
    root = tmp_path / "modules"
    _write(
        root,
        "a/services.yaml",
        "base: &base\n  factory: pkg.a:Thing\n  shared: false\nsvc:\n  <<: *base\n  shared: true\n",
    )
    cr = build_composition_root(root, "dev")
    assert cr.services["svc"] == {"factory": "pkg.a:Thing", "shared": True}


def test_duplicate_json_key_is_a_parse_error(tmp_path):
    root = tmp_path / "modules"
    _write(root, "a/persistence.json", '{"Thing": {"model": "x:Y"}, "Thing": {"model": "x:Z"}}')
    with pytest.raises(FragmentParseError) as exc:
        build_composition_root(root, "dev")
    assert "duplicate key 'Thing'" in str(exc.value)


def test_fragment_must_be_a_mapping(tmp_path):
    root = tmp_path / "modules"
    _write(root, "a/services.yaml", "- one\n- two\n")
    with pytest.raises(FragmentParseError):
        build_composition_root(root, "dev")


def test_entry_must_be_a_mapping(tmp_path):
    root = tmp_path / "modules"
    _write(root, "a/services.yaml", "svc: just-a-string\n")
    with pytest.raises(FragmentParseError):
        build_composition_root(root, "dev")


def test_empty_fragment_registers_module(tmp_path):
    root = tmp_path / "modules"
    _write(root, "placeholder/services.yaml", "")
    cr = build_composition_root(root, "dev")
    assert list(cr.modules) == ["placeholder"]
    assert cr.is_empty()


def test_null_entry_is_empty_definition(tmp_path):
    p = _write(tmp_path, "m/services.yaml", "svc:\n")
    assert load_fragment(p) == {"svc": {}}


def test_two_fragments_for_one_role_are_ambiguous(tmp_path):
    root = tmp_path / "modules"
    _write(root, "a/services.yaml", "x:\n  factory: a:b\n")
    _write(root, "a/services.yml", "y:\n  factory: a:c\n")
    with pytest.raises(AmbiguousFragmentError) as exc:
        build_composition_root(root, "dev")
    assert exc.value.module == "a"
    assert len(exc.value.paths) == 2


def test_discover_ignores_hidden_dirs_and_nested_files(tmp_path):
    root = tmp_path / "modules"
    _write(root, ".cache/services.yaml", "x:\n  factory: a:b\n")
    _write(root, "a/nested/services.yaml", "y:\n  factory: a:b\n")
    _write(root, "b/services.yaml", "z:\n  factory: a:b\n")
    assert [m for m, _ in discover(root.resolve(), "services")] == ["b"]


def test_deep_merge_replaces_lists_and_scalars():
    base = {"a": {"x": 1, "y": [1, 2]}, "b": "keep"}
    merged = deep_merge(base, {"a": {"y": [3]}, "c": True})
    assert merged == {"a": {"x": 1, "y": [3]}, "b": "keep", "c": True}
    assert base == {"a": {"x": 1, "y": [1, 2]}, "b": "keep"}
