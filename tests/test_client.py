"""
Integration tests for HttpClient over the mock transport.

Tests the verb methods, transfers, the authorization retry seen from
the caller, cancellation and the client lifetime.
"""

import asyncio

import pytest

from httptask import HttpClient
from httptask.delegates import DOWNLOAD_PATH_EXTENSION
from httptask.exceptions import (
    AuthorizationError,
    ClientClosedError,
    FilesystemError,
    HttpStatusError,
    ParseError,
    RequestCancelledError,
    TransportError,
)
from httptask.http_primitives import UNKNOWN_LENGTH, HttpMethod
from httptask.parameters import FilePayload
from httptask.request_builder import JsonRequestBuilder
from httptask.serializers import StringResponseSerializer
from httptask.transport import MockTransport


class TestVerbs:
    """Test the verb methods."""

    @pytest.mark.asyncio
    async def test_get(self, client, mock_transport, recorder) -> None:
        mock_transport.add_json({"items": [1, 2]})

        value = await client.get("items", {"page": 2}, completion_handler=recorder)

        assert value == {"items": [1, 2]}
        assert recorder.calls == [({"items": [1, 2]}, None)]
        request = mock_transport.requests[0]
        assert request.method is HttpMethod.GET
        assert request.url == "https://api.example.com/v1/items?page=2"
        assert request.body is None

    @pytest.mark.asyncio
    async def test_post_form(self, client, mock_transport) -> None:
        mock_transport.add_json({"id": 1}, status_code=201)

        value = await client.post("items", {"name": "a", "tags": ["x", "y"]})

        assert value == {"id": 1}
        request = mock_transport.requests[0]
        assert request.body == b"name=a&tags%5B%5D=x&tags%5B%5D=y"
        assert request.get_header("Content-Type") == "application/x-www-form-urlencoded"

    @pytest.mark.asyncio
    async def test_post_multipart(self, client, mock_transport) -> None:
        await client.post("photos", {"caption": "hi", "file": FilePayload(data=b"X", filename="a.png")})
        assert mock_transport.requests[0].get_header("Content-Type").startswith("multipart/form-data")

    @pytest.mark.asyncio
    async def test_put_delete_head(self, client, mock_transport) -> None:
        await client.put("items/1", {"name": "b"})
        await client.delete("items/1", {"force": True})
        assert await client.head("items/1") is None

        methods = [request.method for request in mock_transport.requests]
        assert methods == [HttpMethod.PUT, HttpMethod.DELETE, HttpMethod.HEAD]
        assert mock_transport.requests[1].url.endswith("items/1?force=true")

    @pytest.mark.asyncio
    async def test_absolute_url(self, client, mock_transport) -> None:
        await client.get("https://other.example.com/status")
        assert mock_transport.requests[0].url == "https://other.example.com/status"

    @pytest.mark.asyncio
    async def test_json_request_builder(self, mock_transport) -> None:
        client = HttpClient("https://api.example.com", transport=mock_transport, request_builder=JsonRequestBuilder())
        await client.post("items", {"a": [1]})
        assert mock_transport.requests[0].body == b'{"a": [1]}'

    @pytest.mark.asyncio
    async def test_string_serializer(self, mock_transport) -> None:
        client = HttpClient(transport=mock_transport, response_serializer=StringResponseSerializer())
        mock_transport.add_response(body=b"plain text")
        assert await client.get("https://example.com/robots.txt") == "plain text"

    @pytest.mark.asyncio
    async def test_concurrent_requests(self, client, mock_transport) -> None:
        for n in range(3):
            mock_transport.add_json({"n": n})

        handles = [client.get(f"items/{n}") for n in range(3)]
        values = await asyncio.gather(*handles)

        assert values == [{"n": 0}, {"n": 1}, {"n": 2}]
        assert len(client.dispatcher.registry) == 0
        assert mock_transport.pending == 0

    @pytest.mark.asyncio
    async def test_invalid_parameters_rejected_synchronously(self, client, mock_transport) -> None:
        parameters = {}
        parameters["loop"] = [parameters]
        with pytest.raises(ValueError):
            client.post("items", parameters)
        assert mock_transport.requests == []

    def test_calculate_url(self, client) -> None:
        assert client.calculate_url("users/1") == "https://api.example.com/v1/users/1"
        assert client.calculate_url("http://x.com/a") == "http://x.com/a"


class TestErrors:
    """Test error outcomes."""

    @pytest.mark.asyncio
    async def test_status_error(self, client, mock_transport, recorder) -> None:
        mock_transport.add_response(404, b'{"error": "missing"}')

        handle = client.get("items/9", completion_handler=recorder)
        value, error = await handle.outcome()

        assert value is None
        assert isinstance(error, HttpStatusError)
        assert error.code == 404
        assert recorder.calls == [(None, error)]
        with pytest.raises(HttpStatusError):
            await handle

    @pytest.mark.asyncio
    async def test_parse_error(self, client, mock_transport) -> None:
        mock_transport.add_response(200, b"not json")
        with pytest.raises(ParseError):
            await client.get("items")

    @pytest.mark.asyncio
    async def test_transport_error(self, client, mock_transport) -> None:
        mock_transport.add_error(TransportError("connection reset"))
        with pytest.raises(TransportError):
            await client.get("items")
        assert len(client.dispatcher.registry) == 0

    @pytest.mark.asyncio
    async def test_deeply_nested_json(self, client, mock_transport) -> None:
        mock_transport.add_response(200, b"[" * 200000 + b"]" * 200000)
        value, error = await asyncio.wait_for(client.get("deep").outcome(), 2)
        assert value is None
        assert isinstance(error, ParseError)
        assert len(client.dispatcher.registry) == 0

    @pytest.mark.asyncio
    async def test_serializer_failure(self, mock_transport) -> None:
        class BrokenSerializer(StringResponseSerializer):
            def decode(self, body: bytes) -> str:
                raise RuntimeError("decoder crashed")

        client = HttpClient(transport=mock_transport, response_serializer=BrokenSerializer())
        mock_transport.add_response(body=b"plain text")

        _, error = await asyncio.wait_for(client.get("https://example.com/robots.txt").outcome(), 2)
        assert isinstance(error, RuntimeError)


class TestAuthorizationRetry:
    """Test the authorization retry as seen by the caller."""

    @pytest.mark.asyncio
    async def test_headers_injected(self, authz_client, mock_transport) -> None:
        await authz_client.get("me")
        assert mock_transport.requests[0].get_header("Authorization") == "Bearer token123"

    @pytest.mark.asyncio
    async def test_retry_after_401(self, authz_client, mock_transport, authz, recorder) -> None:
        mock_transport.add_response(401)
        mock_transport.add_json({"name": "me"})

        value = await authz_client.get("me", completion_handler=recorder)

        assert value == {"name": "me"}
        assert authz.revocations == 1
        assert recorder.calls == [({"name": "me"}, None)]
        tokens = [request.get_header("Authorization") for request in mock_transport.requests]
        assert tokens == ["Bearer token123", "Bearer refreshed-1"]

    @pytest.mark.asyncio
    async def test_second_401_delivered(self, authz_client, mock_transport, authz, recorder) -> None:
        mock_transport.add_response(401)
        mock_transport.add_response(401)
        mock_transport.add_json({"never": "reached"})

        _, error = await authz_client.get("me", completion_handler=recorder).outcome()

        assert error.code == 401
        assert authz.revocations == 1
        assert len(mock_transport.requests) == 2
        assert len(recorder.calls) == 1

    @pytest.mark.asyncio
    async def test_authorization_failure(self, authz_client, mock_transport, authz) -> None:
        authz.error = RuntimeError("no refresh token")
        with pytest.raises(AuthorizationError):
            await authz_client.get("me")
        assert mock_transport.requests == []

    @pytest.mark.asyncio
    async def test_transfers_are_not_retried(self, authz_client, mock_transport, authz) -> None:
        mock_transport.add_response(401)
        _, error = await authz_client.upload("files", b"data").outcome()
        assert error.code == 401
        assert authz.revocations == 0
        assert authz.access_requests == 1

    @pytest.mark.asyncio
    async def test_authz_module_can_be_set_later(self, client, mock_transport, authz) -> None:
        client.authz_module = authz
        await client.get("me")
        assert client.orchestrator.authz_module is authz
        assert authz.access_requests == 1


class TestDownload:
    """Test file downloads."""

    @pytest.mark.asyncio
    async def test_download(self, client, mock_transport, tmp_path) -> None:
        mock_transport.add_response(
            chunks=[b"fi", b"le"],
            headers={"Content-Disposition": 'attachment; filename="report.pdf"'},
        )
        progress = []

        response = await client.download(
            "files/1",
            destination_directory=tmp_path / "out",
            progress=lambda *args: progress.append(args),
        )

        path = tmp_path / "out" / "report.pdf"
        assert path.read_bytes() == b"file"
        assert response.extensions[DOWNLOAD_PATH_EXTENSION] == str(path)
        assert progress == [(2, 2, 4), (2, 4, 4)]

    @pytest.mark.asyncio
    async def test_default_directory(self, client, mock_transport, tmp_path) -> None:
        mock_transport.add_response(body=b"img")
        response = await client.download("images/logo.png")
        assert (tmp_path / "default" / "logo.png").read_bytes() == b"img"
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_length(self, client, mock_transport, tmp_path) -> None:
        mock_transport.add_response(body=b"abc", omit_content_length=True)
        progress = []
        await client.download("a.txt", tmp_path, progress=lambda *args: progress.append(args))
        assert progress == [(3, 3, UNKNOWN_LENGTH)]

    @pytest.mark.asyncio
    async def test_body_not_decoded(self, client, mock_transport, tmp_path) -> None:
        mock_transport.add_response(404, b"not json")
        response = await client.download("missing.bin", tmp_path)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_move_failure(self, client, mock_transport, tmp_path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_bytes(b"")
        mock_transport.add_response(body=b"x")

        with pytest.raises(FilesystemError):
            await client.download("a.bin", blocker / "sub")


class TestUpload:
    """Test uploads."""

    @pytest.mark.asyncio
    async def test_upload_bytes(self, client, mock_transport) -> None:
        mock_transport.add_json({"stored": True})
        progress = []

        value = await client.upload("files", b"hello", {"name": "h.txt"}, progress=lambda *a: progress.append(a))

        assert value == {"stored": True}
        assert mock_transport.uploaded[1] == b"hello"
        assert progress == [(5, 5, 5)]
        request = mock_transport.requests[0]
        assert request.method is HttpMethod.POST
        assert request.url.endswith("files?name=h.txt")
        assert request.get_header("Content-Type") == "application/octet-stream"
        assert request.get_header("Content-Length") == "5"

    @pytest.mark.asyncio
    async def test_upload_file(self, client, mock_transport, tmp_path) -> None:
        path = tmp_path / "data.bin"
        path.write_bytes(b"0123456789")

        await client.upload("files", path, method=HttpMethod.PUT)

        assert mock_transport.uploaded[1] == b"0123456789"
        assert mock_transport.requests[0].method is HttpMethod.PUT

    @pytest.mark.asyncio
    async def test_upload_stream(self, client, mock_transport, async_data_generator) -> None:
        progress = []
        await client.upload("files", async_data_generator([b"ab", b"cd"]), progress=lambda *a: progress.append(a))

        assert mock_transport.uploaded[1] == b"abcd"
        assert progress == [(4, 4, UNKNOWN_LENGTH)]
        assert mock_transport.requests[0].get_header("Content-Length") is None

    @pytest.mark.asyncio
    async def test_broken_stream(self, client, async_data_generator) -> None:
        with pytest.raises(TransportError):
            await client.upload("files", async_data_generator(["not bytes"]))

    def test_unsupported_payload(self, client) -> None:
        with pytest.raises(ValueError):
            client.upload("files", 42)


class TestCancellation:
    """Test per-request cancellation."""

    @pytest.mark.asyncio
    async def test_cancel(self, client, mock_transport, recorder) -> None:
        mock_transport.add_response(delay=10)
        handle = client.get("slow", completion_handler=recorder)
        await asyncio.sleep(0.01)

        assert handle.cancel()
        value, error = await handle.outcome()

        assert value is None
        assert isinstance(error, RequestCancelledError)
        assert mock_transport.cancelled == [1]
        await asyncio.sleep(0.01)
        assert len(client.dispatcher.registry) == 0
        assert len(recorder.calls) == 1
        assert isinstance(recorder.calls[0][1], RequestCancelledError)

    @pytest.mark.asyncio
    async def test_cancel_before_submission(self, client, mock_transport) -> None:
        handle = client.get("never")
        handle.cancel()
        with pytest.raises(RequestCancelledError):
            await handle
        assert mock_transport.requests == []


class TestLifetime:
    """Test closing the client."""

    @pytest.mark.asyncio
    async def test_close_cancels_pending(self, client, mock_transport) -> None:
        mock_transport.add_response(delay=10)
        handle = client.get("slow")
        await asyncio.sleep(0.01)

        await client.aclose()

        _, error = await handle.outcome()
        assert isinstance(error, RequestCancelledError)
        assert client.closed
        assert mock_transport.closed
        assert client.dispatcher.closed
        assert len(client.dispatcher.registry) == 0

    @pytest.mark.asyncio
    async def test_requests_after_close(self, client) -> None:
        await client.aclose()
        await client.aclose()
        with pytest.raises(ClientClosedError):
            client.get("items")

    @pytest.mark.asyncio
    async def test_registration_failure_cancels_task(self, client, mock_transport, monkeypatch) -> None:
        def fail(task_id, delegate):
            raise ValueError(f"Task {task_id} already has a delegate")

        monkeypatch.setattr(client.dispatcher, "register", fail)

        _, error = await client.get("items").outcome()
        assert isinstance(error, ValueError)
        assert mock_transport.cancelled == [1]
        assert mock_transport.pending == 0

    @pytest.mark.asyncio
    async def test_context_manager(self) -> None:
        transport = MockTransport()
        async with HttpClient("https://api.example.com", transport=transport) as client:
            await client.get("ping")
        assert client.closed
        assert transport.closed
