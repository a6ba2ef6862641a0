"""
Unit tests for HTTP primitives.

Tests the Request, Response and Credential classes to ensure they
validate their input and maintain immutability.
"""

import dataclasses

import pytest

from httptask.http_primitives import (
    UNKNOWN_LENGTH,
    Credential,
    HttpMethod,
    Request,
    Response,
    find_header,
    merge_header,
)


class TestHttpMethod:
    """Test HttpMethod functionality."""

    def test_query_methods(self) -> None:
        """Test which verbs carry parameters in the URL query."""
        assert HttpMethod.GET.has_query_parameters
        assert HttpMethod.HEAD.has_query_parameters
        assert HttpMethod.DELETE.has_query_parameters
        assert not HttpMethod.POST.has_query_parameters
        assert not HttpMethod.PUT.has_query_parameters


class TestHeaders:
    """Test header helpers."""

    def test_merge_header_replaces_case_insensitively(self) -> None:
        headers = merge_header({"content-type": "text/plain", "Accept": "*/*"}, "Content-Type", "application/json")
        assert headers == {"Accept": "*/*", "Content-Type": "application/json"}

    def test_merge_header_does_not_mutate(self) -> None:
        original = {"Accept": "*/*"}
        merge_header(original, "X-Test", "1")
        assert original == {"Accept": "*/*"}

    def test_find_header(self) -> None:
        assert find_header({"Content-Length": "5"}, "content-length") == "5"
        assert find_header({}, "content-length") is None


class TestCredential:
    """Test Credential functionality."""

    def test_basic_authorization(self) -> None:
        credential = Credential(username="user", password="pass")
        assert credential.has_password
        assert credential.basic_authorization() == "Basic dXNlcjpwYXNz"

    def test_trust_credential(self) -> None:
        credential = Credential.for_trust("trust-object")
        assert credential.trust == "trust-object"
        assert not credential.has_password
        with pytest.raises(ValueError):
            credential.basic_authorization()


class TestRequest:
    """Test Request class functionality."""

    def test_create_with_string_method(self) -> None:
        """Test creating Request with a method name."""
        request = Request.create("get", "https://example.com/api")
        assert request.method is HttpMethod.GET
        assert request.url == "https://example.com/api"
        assert request.headers == {}
        assert request.body is None
        assert request.timeout == 60.0

    def test_create_merges_duplicate_headers(self) -> None:
        request = Request.create("POST", "https://example.com", headers={"accept": "a", "Accept": "b"})
        assert request.headers == {"Accept": "b"}

    def test_url_properties(self) -> None:
        request = Request.create("GET", "https://example.com:8443/api/v1?x=1")
        assert request.scheme == "https"
        assert request.host == "example.com"
        assert request.port == 8443
        assert request.target == "/api/v1?x=1"

    def test_default_ports(self) -> None:
        assert Request.create("GET", "http://example.com").port == 80
        assert Request.create("GET", "https://example.com").port == 443
        assert Request.create("GET", "https://example.com").target == "/"

    def test_immutability(self) -> None:
        """Test that Request is immutable."""
        request = Request.create("GET", "https://example.com")
        with pytest.raises(dataclasses.FrozenInstanceError):
            request.url = "https://other.com"  # type: ignore[misc]

    def test_with_methods_return_copies(self) -> None:
        request = Request.create("GET", "https://example.com", headers={"Accept": "*/*"})

        modified = request.with_header("accept", "text/plain").with_body(b"x").with_method(HttpMethod.POST)
        assert modified.headers == {"accept": "text/plain"}
        assert modified.body == b"x"
        assert modified.method is HttpMethod.POST
        assert request.headers == {"Accept": "*/*"}
        assert request.body is None

        assert modified.without_header("ACCEPT").headers == {}
        assert request.with_url("https://other.com/").host == "other.com"

    def test_get_header(self) -> None:
        request = Request.create("GET", "https://example.com", headers={"Content-Type": "text/plain"})
        assert request.get_header("content-type") == "text/plain"
        assert request.get_header("missing") is None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"method": "GET", "url": "https://example.com"},
            {"method": HttpMethod.GET, "url": "/relative"},
            {"method": HttpMethod.GET, "url": "https://example.com", "body": "text"},
            {"method": HttpMethod.GET, "url": "https://example.com", "timeout": 0},
            {"method": HttpMethod.GET, "url": "https://example.com", "headers": [("a", "b")]},
        ],
    )
    def test_validation(self, kwargs) -> None:
        """Test Request validation."""
        with pytest.raises(ValueError):
            Request(**kwargs)


class TestResponse:
    """Test Response class functionality."""

    def test_basic_creation(self) -> None:
        response = Response(status_code=200, url="https://example.com", headers={"Content-Length": "12"})
        assert response.status_code == 200
        assert response.content_length == 12
        assert response.extensions == {}

    def test_content_length_unknown(self) -> None:
        assert Response(200, "https://example.com").content_length == UNKNOWN_LENGTH
        bad = Response(200, "https://example.com", headers={"Content-Length": "many"})
        assert bad.content_length == UNKNOWN_LENGTH

    def test_header_access(self) -> None:
        response = Response(200, "https://example.com", headers={"Content-Type": "application/json"})
        assert response.has_header("content-type")
        assert not response.has_header("x-missing")

    def test_with_extensions(self) -> None:
        response = Response(200, "https://example.com")
        extended = response.with_extensions({"download_path": "/tmp/file"})
        assert extended.extensions == {"download_path": "/tmp/file"}
        assert response.extensions == {}

    def test_suggested_filename_from_disposition(self) -> None:
        response = Response(
            200,
            "https://example.com/files/123",
            headers={"Content-Disposition": 'attachment; filename="report.pdf"'},
        )
        assert response.suggested_filename == "report.pdf"

    def test_suggested_filename_strips_directories(self) -> None:
        response = Response(
            200,
            "https://example.com/files/123",
            headers={"Content-Disposition": 'attachment; filename="../../etc/passwd"'},
        )
        assert response.suggested_filename == "passwd"

    def test_suggested_filename_from_url(self) -> None:
        assert Response(200, "https://example.com/img/logo%20big.png").suggested_filename == "logo big.png"
        assert Response(200, "https://example.com/").suggested_filename == "download"

    def test_is_redirect(self) -> None:
        assert Response(302, "https://example.com", headers={"Location": "/x"}).is_redirect
        assert not Response(302, "https://example.com").is_redirect
        assert not Response(200, "https://example.com", headers={"Location": "/x"}).is_redirect

    def test_validation(self) -> None:
        with pytest.raises(ValueError):
            Response(status_code="200", url="https://example.com")  # type: ignore[arg-type]
