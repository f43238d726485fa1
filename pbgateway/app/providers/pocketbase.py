"""PocketBase backend adapter built on the shared httpx client."""

from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote, urlencode

import httpx

from pbgateway.app.core.http_client import get_http_client
from pbgateway.app.core.logging import get_logger
from pbgateway.app.exceptions import BackendAuthError, BackendError
from pbgateway.app.providers.base import BackendClient

logger = get_logger(__name__)

SUPERUSER_AUTH_PATH = "/api/collections/_superusers/auth-with-password"

# Page size used when collecting every item of a paginated listing
FULL_LIST_BATCH = 500


def _segment(value: str) -> str:
    return quote(str(value), safe="")


def _clean_params(params: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in params.items() if v is not None and v != ""}


class PocketBaseClient:
    """Handle for one PocketBase instance and one auth token.

    Every method returns the decoded JSON body of the backend response.
    Error responses raise ``BackendError`` with the backend's status and
    body; transport failures propagate as ``httpx.HTTPError``.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str],
        http_client: httpx.AsyncClient,
        record: Optional[dict] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.record = record
        self._http_client = http_client

    def _build_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            # PocketBase expects the raw token, without a "Bearer" prefix
            headers["Authorization"] = self.token
        return headers

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        response = await self._http_client.request(
            method,
            f"{self.base_url}{path}",
            params=_clean_params(params or {}),
            json=json,
            headers=self._build_headers(),
        )

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {"data": body}
            raise BackendError(
                status=response.status_code,
                message=body.get("message") or response.reason_phrase or "Backend error",
                data=body.get("data", {}),
            )

        if response.status_code == 204 or not response.content:
            return True
        try:
            return response.json()
        except ValueError:
            raise BackendError(
                status=response.status_code,
                message="Backend returned a non-JSON response",
            )

    async def _get_full_list(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        items: List[Any] = []
        page = 1
        while True:
            result = await self.request(
                "GET",
                path,
                params={**(params or {}), "page": page, "perPage": FULL_LIST_BATCH, "skipTotal": 1},
            )
            batch = result.get("items", []) if isinstance(result, dict) else []
            items.extend(batch)
            if len(batch) < FULL_LIST_BATCH:
                return items
            page += 1

    # Health & collections

    async def health(self) -> Any:
        return await self.request("GET", "/api/health")

    async def list_collections(self) -> List[Any]:
        return await self._get_full_list("/api/collections")

    async def get_collection(self, collection: str) -> Any:
        return await self.request("GET", f"/api/collections/{_segment(collection)}")

    async def create_collection(self, data: Dict[str, Any]) -> Any:
        return await self.request("POST", "/api/collections", json=data)

    async def update_collection(self, collection: str, data: Dict[str, Any]) -> Any:
        return await self.request("PATCH", f"/api/collections/{_segment(collection)}", json=data)

    async def delete_collection(self, collection: str) -> Any:
        return await self.request("DELETE", f"/api/collections/{_segment(collection)}")

    async def import_collections(self, collections: List[Dict[str, Any]], delete_missing: bool = False) -> Any:
        return await self.request(
            "PUT",
            "/api/collections/import",
            json={"collections": collections, "deleteMissing": delete_missing},
        )

    # Records

    def _records_path(self, collection: str, record_id: Optional[str] = None) -> str:
        path = f"/api/collections/{_segment(collection)}/records"
        if record_id is not None:
            path += f"/{_segment(record_id)}"
        return path

    async def list_records(
        self,
        collection: str,
        page: int = 1,
        per_page: int = 30,
        filter: Optional[str] = None,
        sort: Optional[str] = None,
        expand: Optional[str] = None,
        fields: Optional[str] = None,
    ) -> Any:
        return await self.request(
            "GET",
            self._records_path(collection),
            params={
                "page": page,
                "perPage": per_page,
                "filter": filter,
                "sort": sort,
                "expand": expand,
                "fields": fields,
            },
        )

    async def get_record(
        self,
        collection: str,
        record_id: str,
        expand: Optional[str] = None,
        fields: Optional[str] = None,
    ) -> Any:
        return await self.request(
            "GET",
            self._records_path(collection, record_id),
            params={"expand": expand, "fields": fields},
        )

    async def create_record(self, collection: str, data: Dict[str, Any]) -> Any:
        return await self.request("POST", self._records_path(collection), json=data)

    async def update_record(self, collection: str, record_id: str, data: Dict[str, Any]) -> Any:
        return await self.request("PATCH", self._records_path(collection, record_id), json=data)

    async def delete_record(self, collection: str, record_id: str) -> Any:
        return await self.request("DELETE", self._records_path(collection, record_id))

    # Backups

    async def list_backups(self) -> Any:
        return await self.request("GET", "/api/backups")

    async def create_backup(self, name: str = "") -> Any:
        return await self.request("POST", "/api/backups", json={"name": name})

    async def delete_backup(self, key: str) -> Any:
        return await self.request("DELETE", f"/api/backups/{_segment(key)}")

    # Files

    def file_url(self, record: Dict[str, Any], filename: str, thumb: Optional[str] = None) -> str:
        """Build the download URL of ``filename`` stored on ``record``."""
        collection = record.get("collectionId") or record.get("collectionName") or ""
        url = (
            f"{self.base_url}/api/files/{_segment(collection)}/"
            f"{_segment(record.get('id', ''))}/{_segment(filename)}"
        )
        if thumb:
            url += "?" + urlencode({"thumb": thumb})
        return url

    # Settings & logs

    async def get_settings(self) -> Any:
        return await self.request("GET", "/api/settings")

    async def update_settings(self, data: Dict[str, Any]) -> Any:
        return await self.request("PATCH", "/api/settings", json=data)

    async def list_logs(
        self,
        page: int = 1,
        per_page: int = 30,
        filter: Optional[str] = None,
        sort: Optional[str] = None,
    ) -> Any:
        return await self.request(
            "GET",
            "/api/logs",
            params={"page": page, "perPage": per_page, "filter": filter, "sort": sort},
        )


class PocketBaseBackend(BackendClient):
    """Creates ``PocketBaseClient`` handles over the shared HTTP client."""

    def __init__(self, client_factory: Callable[[], httpx.AsyncClient] = get_http_client):
        self._client_factory = client_factory

    def attach_token(self, url: str, token: str) -> PocketBaseClient:
        return PocketBaseClient(url, token, self._client_factory())

    async def authenticate(self, url: str, identity: str, password: str) -> PocketBaseClient:
        client = PocketBaseClient(url, None, self._client_factory())
        try:
            data = await client.request(
                "POST",
                SUPERUSER_AUTH_PATH,
                json={"identity": identity, "password": password},
            )
        except BackendError as e:
            raise BackendAuthError(status=e.status, message=e.message, data=e.data) from e

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise BackendAuthError(status=401, message="Backend returned no auth token")

        client.token = token
        client.record = data.get("record")
        logger.debug("Superuser credential exchange succeeded")
        return client
