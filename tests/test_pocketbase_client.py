"""Tests for the PocketBase backend adapter."""

import json

import httpx
import pytest

from pbgateway.app.exceptions import BackendAuthError, BackendError
from pbgateway.app.providers.pocketbase import (
    FULL_LIST_BATCH,
    SUPERUSER_AUTH_PATH,
    PocketBaseBackend,
    PocketBaseClient,
)

BASE_URL = "https://pb.example.com"


@pytest.fixture
def http_client():
    return httpx.AsyncClient()


@pytest.fixture
def backend(http_client):
    return PocketBaseBackend(client_factory=lambda: http_client)


class TestPocketBaseBackend:
    """Tests for handle creation and credential exchange."""

    def test_attach_token_makes_no_request(self, backend, respx_mock):
        client = backend.attach_token(BASE_URL + "/", "raw-token")

        assert isinstance(client, PocketBaseClient)
        assert client.base_url == BASE_URL
        assert client.token == "raw-token"
        assert respx_mock.calls.call_count == 0

    @pytest.mark.asyncio
    async def test_authenticate_success(self, backend, respx_mock):
        route = respx_mock.post(BASE_URL + SUPERUSER_AUTH_PATH).mock(
            return_value=httpx.Response(
                200, json={"token": "issued", "record": {"id": "su1", "email": "admin@example.com"}}
            )
        )

        client = await backend.authenticate(BASE_URL, "admin@example.com", "secret")

        assert client.token == "issued"
        assert client.record["id"] == "su1"
        sent = json.loads(route.calls.last.request.content)
        assert sent == {"identity": "admin@example.com", "password": "secret"}
        assert "authorization" not in route.calls.last.request.headers

    @pytest.mark.asyncio
    async def test_authenticate_rejected(self, backend, respx_mock):
        respx_mock.post(BASE_URL + SUPERUSER_AUTH_PATH).mock(
            return_value=httpx.Response(400, json={"message": "Failed to authenticate.", "data": {}})
        )

        with pytest.raises(BackendAuthError) as exc_info:
            await backend.authenticate(BASE_URL, "admin@example.com", "wrong")

        assert exc_info.value.status == 400
        assert exc_info.value.message == "Failed to authenticate."
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_authenticate_without_token_in_response(self, backend, respx_mock):
        respx_mock.post(BASE_URL + SUPERUSER_AUTH_PATH).mock(
            return_value=httpx.Response(200, json={"record": {}})
        )

        with pytest.raises(BackendAuthError, match="no auth token"):
            await backend.authenticate(BASE_URL, "admin@example.com", "secret")

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, backend, respx_mock):
        respx_mock.post(BASE_URL + SUPERUSER_AUTH_PATH).mock(
            side_effect=httpx.ConnectError("connection refused")
        )

        with pytest.raises(httpx.ConnectError):
            await backend.authenticate(BASE_URL, "admin@example.com", "secret")

    def test_default_factory_requires_lifespan(self):
        with pytest.raises(RuntimeError, match="not initialized"):
            PocketBaseBackend().attach_token(BASE_URL, "t")


class TestPocketBaseClient:
    """Tests for backend API calls."""

    @pytest.fixture
    def client(self, http_client):
        return PocketBaseClient(BASE_URL, "raw-token", http_client)

    @pytest.mark.asyncio
    async def test_raw_token_sent_without_bearer_prefix(self, client, respx_mock):
        route = respx_mock.get(BASE_URL + "/api/health").mock(
            return_value=httpx.Response(200, json={"code": 200, "message": "API is healthy."})
        )

        result = await client.health()

        assert result["message"] == "API is healthy."
        assert route.calls.last.request.headers["authorization"] == "raw-token"

    @pytest.mark.asyncio
    async def test_error_response_raises_backend_error(self, client, respx_mock):
        respx_mock.post(BASE_URL + "/api/collections/posts/records").mock(
            return_value=httpx.Response(
                400,
                json={
                    "message": "Failed to create record.",
                    "data": {"title": {"code": "validation_required", "message": "Missing required value."}},
                },
            )
        )

        with pytest.raises(BackendError) as exc_info:
            await client.create_record("posts", {})

        error = exc_info.value
        assert error.status == 400
        assert error.to_dict() == {
            "message": "Failed to create record.",
            "status": 400,
            "data": {"title": {"code": "validation_required", "message": "Missing required value."}},
        }

    @pytest.mark.asyncio
    async def test_non_json_error_body(self, client, respx_mock):
        respx_mock.get(BASE_URL + "/api/settings").mock(
            return_value=httpx.Response(502, text="<html>Bad Gateway</html>")
        )

        with pytest.raises(BackendError) as exc_info:
            await client.get_settings()

        assert exc_info.value.status == 502
        assert exc_info.value.message == "Bad Gateway"
        assert exc_info.value.data == {}

    @pytest.mark.asyncio
    async def test_non_json_success_body_raises_backend_error(self, client, respx_mock):
        respx_mock.get(BASE_URL + "/api/health").mock(
            return_value=httpx.Response(200, text="<html>not pocketbase</html>")
        )

        with pytest.raises(BackendError) as exc_info:
            await client.health()

        assert exc_info.value.status == 200
        assert exc_info.value.message == "Backend returned a non-JSON response"

    @pytest.mark.asyncio
    async def test_empty_response_is_true(self, client, respx_mock):
        respx_mock.delete(BASE_URL + "/api/collections/posts/records/abc").mock(
            return_value=httpx.Response(204)
        )

        assert await client.delete_record("posts", "abc") is True

    @pytest.mark.asyncio
    async def test_list_records_query(self, client, respx_mock):
        route = respx_mock.get(BASE_URL + "/api/collections/posts/records").mock(
            return_value=httpx.Response(200, json={"page": 2, "perPage": 5, "items": []})
        )

        await client.list_records("posts", page=2, per_page=5, filter="published=true", sort="-created")

        params = route.calls.last.request.url.params
        assert params["page"] == "2"
        assert params["perPage"] == "5"
        assert params["filter"] == "published=true"
        assert params["sort"] == "-created"
        assert "expand" not in params
        assert "fields" not in params

    @pytest.mark.asyncio
    async def test_path_segments_are_escaped(self, client, respx_mock):
        route = respx_mock.get(url__regex=r".*/api/collections/.*/records/.*").mock(
            return_value=httpx.Response(200, json={"id": "x"})
        )

        await client.get_record("posts", "../../settings")

        assert "/../" not in route.calls.last.request.url.raw_path.decode()

    @pytest.mark.asyncio
    async def test_list_collections_pages_until_short_batch(self, client, respx_mock):
        full_page = [{"id": f"c{i}"} for i in range(FULL_LIST_BATCH)]
        route = respx_mock.get(BASE_URL + "/api/collections").mock(
            side_effect=[
                httpx.Response(200, json={"items": full_page}),
                httpx.Response(200, json={"items": [{"id": "last"}]}),
            ]
        )

        collections = await client.list_collections()

        assert len(collections) == FULL_LIST_BATCH + 1
        assert collections[-1] == {"id": "last"}
        assert route.call_count == 2
        assert route.calls[1].request.url.params["page"] == "2"
        assert route.calls[1].request.url.params["skipTotal"] == "1"

    @pytest.mark.asyncio
    async def test_import_collections(self, client, respx_mock):
        route = respx_mock.put(BASE_URL + "/api/collections/import").mock(
            return_value=httpx.Response(204)
        )

        await client.import_collections([{"name": "posts"}], delete_missing=True)

        assert json.loads(route.calls.last.request.content) == {
            "collections": [{"name": "posts"}],
            "deleteMissing": True,
        }

    @pytest.mark.asyncio
    async def test_update_record_uses_patch(self, client, respx_mock):
        route = respx_mock.patch(BASE_URL + "/api/collections/posts/records/abc").mock(
            return_value=httpx.Response(200, json={"id": "abc", "title": "new"})
        )

        result = await client.update_record("posts", "abc", {"title": "new"})

        assert result["title"] == "new"
        assert json.loads(route.calls.last.request.content) == {"title": "new"}

    @pytest.mark.asyncio
    async def test_create_backup(self, client, respx_mock):
        route = respx_mock.post(BASE_URL + "/api/backups").mock(return_value=httpx.Response(204))

        assert await client.create_backup("nightly.zip") is True
        assert json.loads(route.calls.last.request.content) == {"name": "nightly.zip"}

    def test_file_url(self, client):
        record = {"id": "rec1", "collectionId": "col1", "collectionName": "posts"}

        assert client.file_url(record, "photo.png") == f"{BASE_URL}/api/files/col1/rec1/photo.png"
        assert (
            client.file_url(record, "photo.png", thumb="100x100")
            == f"{BASE_URL}/api/files/col1/rec1/photo.png?thumb=100x100"
        )

    def test_file_url_falls_back_to_collection_name(self, client):
        record = {"id": "rec1", "collectionName": "posts"}

        assert client.file_url(record, "a b.txt") == f"{BASE_URL}/api/files/posts/rec1/a%20b.txt"
