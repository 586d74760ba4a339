"""In-memory book list kept in sync with server mutations."""
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Mapping, Optional
import logging
import math

from booktrack.client import BookTrackClient
from booktrack.errors import BookTrackError, StorageError, validation_error
from booktrack.models import Book
from booktrack.parse import FIELD_ALIASES, resolve_field
from booktrack.storage import KeyValueStorage

logger = logging.getLogger(__name__)

BOOKS_CACHE_KEY = "booksCache"

# Fields a caller may change on an existing book
EDITABLE_FIELDS = ("title", "author", "genre", "description", "page_count")


def _is_valid_page_count(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return False
    if not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value >= 0


class BookCollection:
    """Ordered list of books for one list view.

    Only successful server mutations change the list; a failed call leaves
    it exactly as it was. Mutations are neither retried nor fenced per id,
    so when two calls for the same book overlap, whichever response lands
    last wins.
    """

    def __init__(
        self,
        client: BookTrackClient,
        storage: Optional[KeyValueStorage] = None
    ):
        """
        Initialize collection.

        Args:
            client: API client used for every call
            storage: Optional storage for the list snapshot cache
        """
        self.client = client
        self.storage = storage
        self.books: List[Book] = []
        self.error: Optional[BookTrackError] = None
        self._unregister: Optional[Callable[[], None]] = client.cleanup.register_hook(self.discard)

    def __len__(self) -> int:
        return len(self.books)

    def __iter__(self):
        return iter(self.books)

    def ids(self) -> List[str]:
        return [book.id for book in self.books]

    def find(self, book_id: str) -> Optional[Book]:
        for book in self.books:
            if book.id == book_id:
                return book
        return None

    def _index_of(self, book_id: str) -> Optional[int]:
        for index, book in enumerate(self.books):
            if book.id == book_id:
                return index
        return None

    async def _call(self, operation: str, coro):
        """Await a client call, recording any failure for display."""
        try:
            result = await coro
        except BookTrackError as e:
            self.error = e
            logger.warning(f"{operation} failed: {e.kind}: {e.message}")
            raise
        self.error = None
        return result

    async def load_all(self, **filters) -> List[Book]:
        """
        Replace the list with the server's, preserving server order.

        Args:
            **filters: genre, author, page, limit

        Returns:
            The new list
        """
        books = await self._call("load_all", self.client.list_books(**filters))
        self.books = list(books)
        logger.info(f"Loaded {len(self.books)} books")
        await self._snapshot()
        return self.books

    async def create(self, draft: Mapping[str, Any]) -> Book:
        """
        Create a book and append it to the end of the list.

        Args:
            draft: Canonical or wire field values

        Returns:
            The created book as returned by the server
        """
        book = await self._call("create", self.client.create_book(draft))

        existing = self._index_of(book.id)
        if existing is not None:
            # Keep ids unique if the server echoes an id we already hold
            logger.warning(f"Created book {book.id} already present; replacing")
            self.books[existing] = book
        else:
            self.books.append(book)
        await self._snapshot()
        return book

    async def update(self, book_id: str, patch: Mapping[str, Any]) -> Book:
        """
        Update a book and replace it in place.

        The patch is merged over the local copy; if the id is not held
        locally the server result is returned but nothing is inserted.

        Args:
            book_id: Book identifier
            patch: Changed fields (canonical or wire names)

        Returns:
            The updated book

        Raises:
            ValidationError: If the resulting page count is not a
                non-negative number (no request is sent)
        """
        current = self.find(book_id)
        fields: Dict[str, Any] = {}
        if current is not None:
            fields = {name: getattr(current, name) for name in EDITABLE_FIELDS}
        for name in EDITABLE_FIELDS:
            value = resolve_field(patch, name)
            if value is not None:
                fields[name] = value
            elif name == "page_count" and any(key in patch for key in FIELD_ALIASES[name]):
                fields[name] = None

        if "page_count" in fields and not _is_valid_page_count(fields["page_count"]):
            self.error = validation_error({"totalPages": "Please enter a valid number of pages"})
            raise self.error

        book = await self._call("update", self.client.update_book(book_id, fields))

        index = self._index_of(book_id)
        if index is None:
            logger.info(f"Updated book {book_id} is not in the list; leaving list unchanged")
        else:
            self.books[index] = book
            await self._snapshot()
        return book

    async def delete(self, book_id: str) -> None:
        """Delete a book and remove it from the list."""
        await self._call("delete", self.client.delete_book(book_id))

        index = self._index_of(book_id)
        if index is not None:
            del self.books[index]
            await self._snapshot()

    async def fetch_and_select(self, book_id: str) -> Book:
        """Fetch one book (e.g. to fill an edit form); the list is untouched."""
        return await self._call("fetch_and_select", self.client.get_book(book_id))

    async def _snapshot(self) -> None:
        if self.storage is None:
            return
        try:
            await self.storage.set_item(BOOKS_CACHE_KEY, [asdict(book) for book in self.books])
        except StorageError as e:
            logger.warning(f"Could not cache book list: {e}")

    def discard(self) -> None:
        """Drop all in-memory state (called on logout)."""
        self.books = []
        self.error = None

    def close(self) -> None:
        """Detach from session cleanup when the view goes away."""
        self.discard()
        if self._unregister is not None:
            self._unregister()
            self._unregister = None
