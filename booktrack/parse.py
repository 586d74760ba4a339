"""Parse and normalize BookTrack API payloads."""
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Dict, Any, Callable, List, Mapping, Optional, Tuple, Union
import logging
import math

from booktrack.models import Book, Profile

logger = logging.getLogger(__name__)

# Canonical field -> accepted wire keys, in lookup order.
# Canonical names come last so an already-normalized Book maps onto itself.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "id": ("id", "_id"),
    "title": ("title",),
    "author": ("author",),
    "genre": ("genre",),
    "description": ("description",),
    "page_count": ("totalPages", "total_pages", "pageCount", "page_count"),
    "owner_id": ("ownerId", "userId", "owner_id", "user_id"),
    "created_at": ("createdAt", "created_at"),
    "updated_at": ("updatedAt", "updated_at"),
}

# Fields the service manages itself; never sent on writes
SERVER_MANAGED = ("id", "owner_id", "created_at", "updated_at")

# Canonical field -> wire key for outgoing create/update bodies
WIRE_FIELDS: Dict[str, str] = {
    "title": "title",
    "author": "author",
    "genre": "genre",
    "description": "description",
    "page_count": "totalPages",
}

BookLike = Union[Book, Mapping[str, Any]]


def utc_now() -> str:
    """Current time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def resolve_field(payload: Mapping[str, Any], field: str) -> Any:
    """
    Return the value of the first present alias of a canonical field.

    Args:
        payload: Wire payload
        field: Canonical field name

    Returns:
        The value, or None if no alias is present
    """
    for key in FIELD_ALIASES[field]:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def coerce_page_count(value: Any) -> int:
    """
    Coerce a page count from any accepted wire form to an int >= 0.

    Numbers and numeric strings are truncated toward zero; anything else,
    including negatives and booleans, becomes 0.
    """
    if value is None or isinstance(value, bool):
        return 0

    if isinstance(value, str):
        text = value.strip()
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                return 0
    elif isinstance(value, (int, float)):
        number = value
    else:
        return 0

    if isinstance(number, float):
        if not math.isfinite(number):
            return 0
        number = int(number)

    return max(number, 0)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def parse_book(
    item: BookLike,
    fallback: Optional[Mapping[str, Any]] = None,
    now: Callable[[], str] = utc_now
) -> Book:
    """
    Normalize a single book payload into a canonical Book.

    Args:
        item: Wire payload (any accepted key variant) or an existing Book
        fallback: Canonical values used where the payload has none
        now: Timestamp source for missing created/updated times

    Returns:
        Canonical Book

    Raises:
        ValueError: If the payload is not a mapping or has no identifier
    """
    if isinstance(item, Book):
        item = asdict(item)
    if not isinstance(item, Mapping):
        raise ValueError(f"Book payload must be an object, got {type(item).__name__}")

    fallback = fallback or {}
    values = {}
    for field in FIELD_ALIASES:
        value = resolve_field(item, field)
        if value is None:
            value = fallback.get(field)
        values[field] = value

    if values["id"] is None or values["id"] == "":
        raise ValueError("Book payload has no identifier")

    # Only stamp timestamps that are actually missing
    timestamp = None
    for field in ("created_at", "updated_at"):
        if not values[field]:
            timestamp = timestamp or now()
            values[field] = timestamp

    return Book(
        id=str(values["id"]),
        title=_text(values["title"]),
        author=_text(values["author"]),
        genre=_text(values["genre"]),
        description=_text(values["description"]),
        page_count=coerce_page_count(values["page_count"]),
        owner_id=_text(values["owner_id"]),
        created_at=str(values["created_at"]),
        updated_at=str(values["updated_at"]),
    )


def parse_books_response(items: Any, now: Callable[[], str] = utc_now) -> List[Book]:
    """
    Parse a list payload, preserving server order.

    Args:
        items: List of book payloads
        now: Timestamp source for missing times

    Returns:
        List of Book objects; elements without an identifier are skipped

    Raises:
        ValueError: If the payload is not a list
    """
    if not isinstance(items, list):
        raise ValueError(f"Book list payload must be a list, got {type(items).__name__}")

    books = []
    for item in items:
        try:
            books.append(parse_book(item, now=now))
        except ValueError as e:
            # Log but don't drop the whole list for one bad element
            logger.warning(f"Skipping unparseable book: {e}")

    return deduplicate_books(books)


def deduplicate_books(books: List[Book]) -> List[Book]:
    """
    Remove duplicate books by ID.

    Args:
        books: List of Book objects

    Returns:
        Deduplicated list of books, first occurrence kept
    """
    seen_ids = set()
    unique_books = []

    for book in books:
        if book.id not in seen_ids:
            seen_ids.add(book.id)
            unique_books.append(book)
        else:
            logger.warning(f"Dropping duplicate book id: {book.id}")

    return unique_books


def to_wire(book: BookLike) -> Dict[str, Any]:
    """
    Build the request body for a create or update call.

    Accepts a Book or a partial mapping of canonical (or wire) fields;
    server-managed fields are never included.

    Args:
        book: Book or draft fields

    Returns:
        Wire payload
    """
    if isinstance(book, Book):
        book = asdict(book)

    payload = {}
    for field, wire_key in WIRE_FIELDS.items():
        value = resolve_field(book, field)
        if value is None:
            continue
        payload[wire_key] = coerce_page_count(value) if field == "page_count" else value

    return payload


def unwrap_data(response_json: Any) -> Any:
    """Return the ``data`` envelope of a response, or the body itself."""
    if isinstance(response_json, dict) and "data" in response_json:
        return response_json["data"]
    return response_json


def parse_profile(response_json: Any) -> Optional[Profile]:
    """
    Parse a profile payload (enveloped or bare).

    Returns:
        Profile, or None if username or email is missing
    """
    data = unwrap_data(response_json)
    if not isinstance(data, dict):
        return None

    username = data.get("username")
    email = data.get("email")
    if not username or not email:
        return None

    return Profile(username=str(username), email=str(email))
