"""Category repository: resolves user-defined categories by id or name."""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from ledgersort.models.patterns import Category


class CategoryRepository(ABC):

    @abstractmethod
    def get(self, category_id: str) -> Optional[Category]:
        """Category by identifier."""

    @abstractmethod
    def find_by_name(self, name: str) -> Optional[Category]:
        """Category by case-insensitive name."""

    @abstractmethod
    def list_all(self) -> List[Category]:
        """All known categories."""

    def resolve(self, identifier: Optional[str]) -> Optional[Category]:
        """Look ``identifier`` up as an id first, then as a name."""
        if not identifier:
            return None
        return self.get(identifier) or self.find_by_name(identifier)


class InMemoryCategoryStore(CategoryRepository):
    def __init__(self, categories: Optional[Iterable[Category]] = None) -> None:
        self._categories: Dict[str, Category] = {}
        self._lock = threading.Lock()
        for category in categories or []:
            self.add(category)

    def add(self, category: Category) -> Category:
        with self._lock:
            self._categories[category.id] = category
        return category

    def get(self, category_id: str) -> Optional[Category]:
        with self._lock:
            return self._categories.get(category_id)

    def find_by_name(self, name: str) -> Optional[Category]:
        wanted = (name or "").strip().lower()
        with self._lock:
            for category in self._categories.values():
                if category.name.lower() == wanted:
                    return category
        return None

    def list_all(self) -> List[Category]:
        with self._lock:
            return sorted(self._categories.values(), key=lambda c: c.id)
