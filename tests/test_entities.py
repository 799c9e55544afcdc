"""Tests for the entity registry and the repository passthrough."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from app.modulith.container import ServiceContainer
from app.modulith.entities import EntityRegistry
from app.modulith.errors import CompositionError
from app.modulith.models import Base
from app.modulith.modules.example.models import Example
from app.modulith.modules.example.repository import ExampleRepository
from app.modulith.repository import Repository

MODEL = "app.modulith.modules.example.models:Example"


def _container():
    return ServiceContainer(
        {"example.repository": {"factory": "app.modulith.modules.example.repository:ExampleRepository"}}
    )


def test_registers_model_and_wired_repository():
    c = _container()
    reg = EntityRegistry.from_definitions({"Example": {"model": MODEL, "repository": "example.repository"}}, c)
    assert reg.names() == ["Example"]
    assert reg.model("Example") is Example
    assert reg.tables() == ["examples"]
    repo = reg.repository("Example")
    assert isinstance(repo, ExampleRepository)
    assert repo is c.get("example.repository")


def test_default_repository_when_not_wired():
    reg = EntityRegistry.from_definitions({"Example": {"model": MODEL}}, ServiceContainer({}))
    repo = reg.repository("Example")
    assert type(repo) is Repository
    assert repo.model is Example
    assert reg.repository("Example") is repo


@pytest.mark.parametrize(
    "definition",
    [
        {},
        {"model": "app.modulith.models:Base"},
        {"model": "collections:OrderedDict"},
        {"model": "no_such_package_xyz:Thing"},
        {"model": MODEL, "repository": "missing.repository"},
    ],
)
def test_invalid_definitions_fail_fast(definition):
    with pytest.raises(CompositionError):
        EntityRegistry.from_definitions({"Thing": definition}, ServiceContainer({}))


def test_same_model_twice_is_rejected():
    with pytest.raises(CompositionError):
        EntityRegistry.from_definitions({"A": {"model": MODEL}, "B": {"model": MODEL}}, ServiceContainer({}))


def test_unknown_entity():
    reg = EntityRegistry.from_definitions({}, ServiceContainer({}))
    with pytest.raises(CompositionError):
        reg.model("Nope")


def test_repository_save_remove_and_paging(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path/'repo.db'}", future=True)
    Base.metadata.create_all(bind=engine)
    repo = ExampleRepository()

    with Session(engine) as s:
        items = [Example(name=f"item {i}") for i in range(5)]
        for e in items[:-1]:
            repo.save(s, e)
        repo.save(s, items[-1], flush=True)
        assert all(e.id is not None for e in items)
        s.commit()

        assert repo.count(s) == 5
        page = repo.find_page(s, offset=2, limit=2)
        assert [e.name for e in page] == ["item 2", "item 3"]
        assert repo.find(s, items[0].id).name == "item 0"

        repo.remove(s, items[0], flush=True)
        assert repo.find(s, items[0].id) is None
        s.rollback()
        assert repo.count(s) == 5
