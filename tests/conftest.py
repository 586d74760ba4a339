"""Shared fixtures: in-memory storage and a fake BookTrack API."""
import asyncio
import json

import httpx
import psycopg2
import pytest

from booktrack.client import BookTrackClient
from booktrack.errors import StorageError
from booktrack.storage import MemoryStorage, SessionStore

BASE_URL = "https://booktrack.test/api"


class FakeApi:
    """Answers requests from a route table and records what was sent.

    Each route holds a list of responses consumed in order; the last one
    is reused once the list runs out. A response may be an httpx.Response,
    an exception to raise, or a callable taking the request.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def on(self, method: str, path: str, *responses):
        self.routes[(method, path)] = list(responses)
        return self

    def reply(self, method: str, path: str, status: int = 200, json=None):
        return self.on(method, path, httpx.Response(status, json=json))

    def calls(self, method: str = None, path: str = None):
        return [
            r for r in self.requests
            if (method is None or r.method == method)
            and (path is None or self.path_of(r) == path)
        ]

    @staticmethod
    def path_of(request: httpx.Request) -> str:
        return request.url.path[len("/api"):]

    @staticmethod
    def body_of(request: httpx.Request):
        return json.loads(request.content) if request.content else None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, self.path_of(request))
        if key not in self.routes:
            return httpx.Response(404, json={"message": f"No route for {key}"})

        queue = self.routes[key]
        response = queue.pop(0) if len(queue) > 1 else queue[0]

        if isinstance(response, Exception):
            raise response
        if isinstance(response, httpx.Response):
            # Fresh copy so a route can answer more than once
            return httpx.Response(
                response.status_code, headers=response.headers, content=response.content
            )
        if callable(response):
            response = response(request)
            if asyncio.iscoroutine(response):
                response = await response
        return response


class FailingStorage(MemoryStorage):
    """Storage whose selected operations raise StorageError."""

    def __init__(self, initial=None, fail_on=("get_item",)):
        super().__init__(initial)
        self.fail_on = set(fail_on)

    async def get_item(self, key):
        if "get_item" in self.fail_on:
            raise StorageError("storage unavailable")
        return await super().get_item(key)

    async def remove_item(self, key):
        if "remove_item" in self.fail_on:
            raise StorageError("storage unavailable")
        return await super().remove_item(key)

    async def get_all_keys(self):
        if "get_all_keys" in self.fail_on:
            raise StorageError("storage unavailable")
        return await super().get_all_keys()


class StubCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def execute(self, sql, params=None):
        if self.conn.fail_execute:
            raise psycopg2.OperationalError("server closed the connection")
        self.conn.executed.append(sql)

    def fetchone(self):
        return None

    def fetchall(self):
        return []


class StubConnection:
    """Just enough of a psycopg2 connection for PostgresStorage."""

    def __init__(self):
        self.executed = []
        self.fail_execute = False
        self.fail_rollback = False

    def cursor(self):
        return StubCursor(self)

    def commit(self):
        pass

    def rollback(self):
        if self.fail_rollback:
            raise psycopg2.InterfaceError("connection already closed")


class StubPool:
    """Connection pool that can be switched to refuse connections."""

    def __init__(self):
        self.conn = StubConnection()
        self.broken = False
        self.returned = 0

    def getconn(self):
        if self.broken:
            raise psycopg2.OperationalError("could not connect to server")
        return self.conn

    def putconn(self, conn):
        self.returned += 1

    def closeall(self):
        pass


def raise_timeout(request):
    raise httpx.ReadTimeout("timed out", request=request)


def refuse_connection(request):
    raise httpx.ConnectError("connection refused", request=request)


def book_payload(**overrides):
    payload = {
        "_id": "b1",
        "title": "Dune",
        "author": "Frank Herbert",
        "genre": "sci-fi",
        "description": "Spice",
        "totalPages": 412,
        "userId": "u1",
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": "2024-01-02T00:00:00Z",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def session_store(storage):
    return SessionStore(storage)


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def client(api, session_store):
    client = BookTrackClient(
        session_store,
        base_url=BASE_URL,
        transport=httpx.MockTransport(api)
    )
    yield client
    asyncio.run(client.close())
