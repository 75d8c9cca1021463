"""Sample entities mapped by the test fixtures."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel


class Article(BaseModel):
    id: str | None = None
    title: str
    status: str = "draft"
    author_id: str | None = None
    rank: int = 0


@dataclass
class Author:
    id: str | None = None
    name: str = ""


@dataclass
class Item:
    id: int | None = None
    name: str = ""
