"""Async HTTP client for the BookTrack API."""
from dataclasses import asdict
from typing import Any, Dict, List, Mapping, Optional
import logging
import re

import httpx

from booktrack.cleanup import SessionCleanup
from booktrack.errors import (
    StorageError,
    UnknownError,
    normalize_error,
    normalize_response,
    require_fields,
    validation_error,
)
from booktrack.models import Book, Profile
from booktrack.parse import BookLike, parse_book, parse_books_response, parse_profile, to_wire, unwrap_data
from booktrack.storage import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://backendbooktrack-production.up.railway.app/api"
PROFILE_CACHE_KEY = "userProfileCache"
REGISTER_OK_MESSAGE = "User registered successfully"
EMAIL_PATTERN = r"\S+@\S+\.\S+"


class CredentialInjector:
    """Request hook that attaches the current session credential.

    The session is re-read for every request, so clearing the store takes
    effect on the very next call. If the store cannot be read the request
    goes out without a credential instead of failing.
    """

    def __init__(self, session_store: SessionStore):
        self.session_store = session_store

    async def __call__(self, request: httpx.Request) -> None:
        try:
            session = await self.session_store.get()
        except StorageError as e:
            logger.warning(f"Could not read session, sending {request.url.path} anonymously: {e}")
            return

        if session.is_authenticated:
            request.headers["Authorization"] = f"Bearer {session.token}"


class BookTrackClient:
    """Authenticated client for auth, profile and book endpoints."""

    def __init__(
        self,
        session_store: SessionStore,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 10,
        cleanup: Optional[SessionCleanup] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize client.

        Args:
            session_store: Owner of the session credential
            base_url: API root, e.g. https://host/api
            timeout: Request timeout in seconds
            cleanup: Logout cleanup (defaults to one over the session storage)
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.session_store = session_store
        self.cleanup = cleanup or SessionCleanup(session_store, session_store.storage)

        # Create async HTTP client
        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json"},
            event_hooks={"request": [CredentialInjector(session_store)]},
            transport=transport,
        )

    async def request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Send a request through the credential and error pipeline.

        Args:
            method: HTTP method
            path: Path relative to the API root
            json: Optional JSON body
            params: Optional query parameters

        Returns:
            Decoded JSON body, or None for an empty success

        Raises:
            BookTrackError: Normalized failure; transport exceptions never escape
        """
        logger.info(f"{method} {path}")
        try:
            response = await self.client.request(method, path, json=json, params=params)
        except Exception as e:
            error = normalize_error(e)
            logger.error(f"API error: {method} {path} -> {error.kind}: {error.message}")
            raise error from e

        if response.is_error:
            error = normalize_response(response)
            logger.error(
                f"API error: {method} {path} -> {response.status_code} "
                f"{error.kind}: {error.message}"
            )
            raise error

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Malformed response body from {method} {path}")
            raise UnknownError(status_code=response.status_code) from e

    @staticmethod
    def _data(body: Any) -> Any:
        """Extract the ``data`` envelope, treating its absence as malformed."""
        if not isinstance(body, dict) or "data" not in body:
            raise UnknownError()
        return body["data"]

    @staticmethod
    def _book(data: Any, fallback: Optional[Mapping[str, Any]] = None) -> Book:
        try:
            return parse_book(data, fallback=fallback)
        except ValueError as e:
            logger.error(f"Malformed book payload: {e}")
            raise UnknownError() from e

    # --- Auth ---

    async def login(self, username: str, password: str) -> str:
        """
        Log in and persist the session token.

        Returns:
            The session token
        """
        require_fields({"username": username, "password": password})

        body = await self.request("POST", "/auth/login", json={"username": username, "password": password})
        data = unwrap_data(body)
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise UnknownError("No token received from login")

        await self.session_store.set(token)
        logger.info(f"Logged in as {username}")
        return token

    async def register(self, username: str, password: str, email: str) -> str:
        """
        Register a new account. Does not log in.

        Returns:
            The server's confirmation message
        """
        require_fields({"username": username, "password": password, "email": email})

        body = await self.request(
            "POST",
            "/auth/register",
            json={"username": username, "password": password, "email": email},
        )
        message = body.get("message") if isinstance(body, dict) else None
        if not message:
            raise UnknownError("Registration failed")
        if message != REGISTER_OK_MESSAGE:
            logger.warning(f"Unexpected registration message: {message}")
        return message

    async def logout(self) -> None:
        await self.cleanup.perform_cleanup()
        logger.info("Logged out")

    # --- Profile ---

    async def fetch_profile(self) -> Profile:
        body = await self.request("GET", "/profile")
        profile = parse_profile(body)
        if profile is None:
            raise UnknownError("Invalid profile data received")

        try:
            await self.session_store.storage.set_item(PROFILE_CACHE_KEY, asdict(profile))
        except StorageError as e:
            logger.warning(f"Could not cache profile: {e}")
        return profile

    async def update_profile(self, username: str, email: str) -> Profile:
        """
        Update username and email.

        Raises:
            ValidationError: If username is empty or email is missing/invalid
        """
        errors = {}
        if not username or not username.strip():
            errors["username"] = "Username is required"
        if not email or not email.strip():
            errors["email"] = "Email is required"
        elif not re.search(EMAIL_PATTERN, email):
            errors["email"] = "Please enter a valid email"
        if errors:
            raise validation_error(errors)

        body = await self.request("PUT", "/profile", json={"username": username, "email": email})
        return parse_profile(body) or Profile(username=username, email=email)

    # --- Books ---

    async def list_books(
        self,
        genre: Optional[str] = None,
        author: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None
    ) -> List[Book]:
        """
        List books, optionally filtered.

        Args:
            genre: Filter by genre
            author: Filter by author
            page: Page number
            limit: Page size

        Returns:
            Canonical books in server order
        """
        filters = {"genre": genre, "author": author, "page": page, "limit": limit}
        params = {key: value for key, value in filters.items() if value is not None}

        body = await self.request("GET", "/books", params=params or None)
        try:
            return parse_books_response(self._data(body))
        except ValueError as e:
            logger.error(f"Malformed book list: {e}")
            raise UnknownError() from e

    async def get_book(self, book_id: str) -> Book:
        body = await self.request("GET", f"/books/{book_id}")
        return self._book(self._data(body), fallback={"id": book_id})

    async def create_book(self, draft: BookLike) -> Book:
        payload = to_wire(draft)
        body = await self.request("POST", "/books", json=payload)
        return self._book(self._data(body), fallback={"description": payload.get("description")})

    async def update_book(self, book_id: str, fields: BookLike) -> Book:
        payload = to_wire(fields)
        body = await self.request("PUT", f"/books/{book_id}", json=payload)
        return self._book(
            self._data(body),
            fallback={"id": book_id, "description": payload.get("description")},
        )

    async def delete_book(self, book_id: str) -> None:
        await self.request("DELETE", f"/books/{book_id}")

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
