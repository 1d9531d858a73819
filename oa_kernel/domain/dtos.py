"""Shared read-side value objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

from oa_kernel.exceptions import InvalidInputError

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class PageRequest:
    """1-based page window; validated on construction."""

    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def __post_init__(self) -> None:
        if self.page < 1:
            raise InvalidInputError(f"page must be >= 1, got {self.page}", field="page")
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise InvalidInputError(
                f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {self.page_size}",
                field="page_size",
            )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass(frozen=True)
class Page(Generic[T]):
    data: tuple[T, ...] = field(default_factory=tuple)
    total: int = 0
