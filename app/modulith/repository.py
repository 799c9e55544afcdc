from __future__ import annotations

from typing import Any, Generic, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.modulith.models import Base

T = TypeVar("T", bound=Base)


class Repository(Generic[T]):
    """
    Persistence passthrough for one entity class.

    The session is always passed in: callers own the unit of work and decide
    when to commit. `flush=True` pushes pending changes (and assigns primary
    keys) without committing.
    """

    def __init__(self, model: type[T]):
        self.model = model

    def save(self, s: Session, entity: T, flush: bool = False) -> None:
        s.add(entity)
        if flush:
            s.flush()

    def remove(self, s: Session, entity: T, flush: bool = False) -> None:
        s.delete(entity)
        if flush:
            s.flush()

    def find(self, s: Session, entity_id: Any) -> T | None:
        return s.get(self.model, entity_id)

    def count(self, s: Session) -> int:
        return s.scalar(select(func.count()).select_from(self.model)) or 0

    def find_page(self, s: Session, offset: int, limit: int) -> list[T]:
        pk = self.model.__mapper__.primary_key
        stmt = select(self.model).order_by(*pk).offset(offset).limit(limit)
        return list(s.scalars(stmt))
