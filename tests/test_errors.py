"""Tests for error normalization."""
import httpx
import pytest

from booktrack.errors import (
    AuthError,
    NetworkError,
    NotFoundError,
    ServerMessageError,
    UnknownError,
    ValidationError,
    join_field_messages,
    normalize_error,
    normalize_response,
    require_fields,
)

REQUEST = httpx.Request("GET", "https://booktrack.test/api/books")


def test_field_errors_become_validation_error():
    """Test that a field map wins and messages join in mapping order."""
    response = httpx.Response(400, json={
        "message": "Validation failed",
        "errors": {"username": "Username is taken", "password": "Password too short"},
    })

    error = normalize_response(response)

    assert isinstance(error, ValidationError)
    assert error.message == "Username is taken, Password too short"
    assert error.fields == {"username": "Username is taken", "password": "Password too short"}
    assert error.status_code == 400


def test_field_error_lists_are_flattened():
    """Test that list-valued field messages are joined too."""
    assert join_field_messages({"title": ["required", "too short"], "genre": "bad"}) == \
        "required, too short, bad"


def test_field_map_beats_auth_status():
    """Test that a field map on a 401 is still a validation error."""
    response = httpx.Response(401, json={"errors": {"password": "Wrong password"}})

    assert isinstance(normalize_response(response), ValidationError)


@pytest.mark.parametrize("status", [401, 403])
def test_auth_statuses(status):
    """Test that 401/403 map to AuthError and keep the server message."""
    response = httpx.Response(status, json={"message": "Invalid credentials"})

    error = normalize_response(response)

    assert isinstance(error, AuthError)
    assert error.message == "Invalid credentials"


def test_auth_without_message_uses_default():
    """Test AuthError's default message."""
    error = normalize_response(httpx.Response(401))

    assert isinstance(error, AuthError)
    assert error.message == "Not authorized"


def test_not_found():
    """Test that 404 maps to NotFoundError."""
    error = normalize_response(httpx.Response(404, json={"message": "Book not found"}))

    assert isinstance(error, NotFoundError)
    assert error.message == "Book not found"


def test_message_only_is_server_message_error():
    """Test a plain server message on another status."""
    error = normalize_response(httpx.Response(500, json={"message": "Database down"}))

    assert isinstance(error, ServerMessageError)
    assert error.message == "Database down"


@pytest.mark.parametrize("response", [
    httpx.Response(500),
    httpx.Response(502, text="<html>Bad gateway</html>"),
    httpx.Response(400, json=["unexpected"]),
    httpx.Response(400, json={"message": "   "}),
    httpx.Response(422, json={"errors": {}}),
])
def test_unmatched_falls_back_to_unknown(response):
    """Test the fallback for responses no rule matches."""
    error = normalize_response(response)

    assert isinstance(error, UnknownError)
    assert error.message == "Network error"


@pytest.mark.parametrize("exc", [
    httpx.ReadTimeout("timed out", request=REQUEST),
    httpx.ConnectTimeout("timed out", request=REQUEST),
    httpx.ConnectError("connection refused", request=REQUEST),
])
def test_transport_failures_are_network_errors(exc):
    """Test that calls that never reached the server are network errors."""
    error = normalize_error(exc)

    assert isinstance(error, NetworkError)
    assert error.kind == "NetworkError"


def test_http_status_error_uses_response():
    """Test that raise_for_status style errors are classified by response."""
    response = httpx.Response(404, request=REQUEST)
    exc = httpx.HTTPStatusError("not found", request=REQUEST, response=response)

    assert isinstance(normalize_error(exc), NotFoundError)


def test_unexpected_exception_is_unknown():
    """Test that arbitrary exceptions never escape unclassified."""
    error = normalize_error(RuntimeError("boom"))

    assert isinstance(error, UnknownError)
    assert error.message == "Network error"


def test_normalized_error_passes_through():
    """Test that an already-normalized error is returned as is."""
    original = NotFoundError("gone")

    assert normalize_error(original) is original


def test_require_fields_names_empty_fields():
    """Test local pre-flight validation."""
    with pytest.raises(ValidationError) as excinfo:
        require_fields({"username": "alice", "password": ""})

    assert excinfo.value.fields == {"password": "Password is required"}
    assert "Password" in excinfo.value.message


def test_require_fields_rejects_whitespace():
    """Test that whitespace-only values count as empty."""
    with pytest.raises(ValidationError):
        require_fields({"username": "   "})


def test_to_dict():
    """Test the display form of an error."""
    error = ValidationError("Title is required", fields={"title": "Title is required"})

    assert error.to_dict() == {
        "kind": "ValidationError",
        "message": "Title is required",
        "fields": {"title": "Title is required"},
    }
