"""Data models for books, sessions and profiles."""
from dataclasses import dataclass
from typing import Optional


@dataclass
class Book:
    """Canonical book representation used everywhere above the wire."""
    id: str
    title: str
    author: str
    genre: str
    description: str
    page_count: int
    owner_id: str
    created_at: str
    updated_at: str

    @property
    def pages_str(self) -> str:
        """Format page count for display."""
        return f"{self.page_count} pages" if self.page_count else "N/A"


@dataclass(frozen=True)
class Session:
    """Current session credential; no token means anonymous."""
    token: Optional[str] = None

    @classmethod
    def anonymous(cls) -> "Session":
        return cls()

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)


@dataclass
class Profile:
    """User profile as returned by the service."""
    username: str
    email: str
