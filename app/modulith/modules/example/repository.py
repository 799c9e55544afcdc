from __future__ import annotations

from app.modulith.modules.example.models import Example
from app.modulith.repository import Repository


class ExampleRepository(Repository[Example]):
    def __init__(self) -> None:
        super().__init__(Example)
