"""Study categories a slot can be assigned to, seeded with defaults on first use."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .storage.base import CATEGORIES, DocumentStorage

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: Tuple[Tuple[str, str], ...] = (
    ("Language", "#FF5252"),
    ("Math", "#4CAF50"),
    ("English", "#2196F3"),
    ("Science", "#FFC107"),
    ("Social Studies", "#9C27B0"),
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_category_id() -> str:
    return f"category_{uuid.uuid4().hex[:12]}"


class Category(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_category_id)
    name: str = Field(min_length=1)
    color: str = Field(min_length=1)
    created_at: datetime = Field(default_factory=_now, alias="createdAt")

    @field_validator("name", "color")
    @classmethod
    def _strip(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Category name and color cannot be blank.")
        return stripped

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude={"id"})


class CategoryRepository:
    def __init__(self, storage: DocumentStorage) -> None:
        self._storage = storage

    async def _read_all(self) -> List[Category]:
        documents = await self._storage.list_documents(CATEGORIES)
        categories: List[Category] = []
        for category_id, document in documents.items():
            try:
                categories.append(Category.model_validate({**document, "id": category_id}))
            except ValidationError as exc:
                logger.warning("Ignoring malformed category %s: %s", category_id, exc)
        return sorted(categories, key=lambda category: (category.created_at, category.id))

    async def list(self) -> List[Category]:
        """Stored categories; an empty collection is seeded with the defaults."""
        categories = await self._read_all()
        if categories:
            return categories
        seeded_at = _now()
        for index, (name, color) in enumerate(DEFAULT_CATEGORIES):
            created_at = seeded_at + timedelta(microseconds=index)
            categories.append(await self._save(Category(name=name, color=color, created_at=created_at)))
        logger.info("Seeded %d default categories", len(categories))
        return categories

    async def get(self, category_id: str) -> Optional[Category]:
        document = await self._storage.get_document(CATEGORIES, category_id)
        if not document:
            return None
        try:
            return Category.model_validate({**document, "id": category_id})
        except ValidationError as exc:
            logger.warning("Ignoring malformed category %s: %s", category_id, exc)
            return None

    async def _save(self, category: Category) -> Category:
        await self._storage.set_document(CATEGORIES, category.id, category.to_document())
        return category

    async def add(self, name: str, color: str) -> Category:
        return await self._save(Category(name=name, color=color))

    async def update(
        self,
        category_id: str,
        *,
        name: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Optional[Category]:
        current = await self.get(category_id)
        if current is None:
            return None
        changes = {key: value for key, value in (("name", name), ("color", color)) if value is not None}
        updated = Category.model_validate({**current.model_dump(), **changes})
        return await self._save(updated)

    async def delete(self, category_id: str) -> bool:
        if await self._storage.get_document(CATEGORIES, category_id) is None:
            return False
        await self._storage.delete_document(CATEGORIES, category_id)
        return True

    async def ids(self) -> List[str]:
        return [category.id for category in await self.list()]


__all__ = [
    "Category",
    "CategoryRepository",
    "DEFAULT_CATEGORIES",
    "new_category_id",
]
