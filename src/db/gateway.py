# authenticated access to the remote backend: REST resources, auth, edge functions, file storage
from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests

from utils.config import Settings
from utils.errors import RemoteError, ValidationError
from utils.logger import get_logger

_logger = get_logger(__name__)

Filters = Mapping[str, str]


def eq(value: Any) -> str:
    """PostgREST equality operand, e.g. {"id": eq(42)} -> id=eq.42"""
    return f"eq.{value}"


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason or f"HTTP Error: {resp.status_code}"
    if isinstance(body, dict):
        for key in ("message", "error_description", "msg", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP Error: {resp.status_code}"


class RemoteGateway:
    """
    Thin async accessor for the backend-as-a-service.

    Every call carries the API key header and a bearer credential: the
    signed-in user's access token when a token provider returns one,
    otherwise the anonymous key. Calls either return the parsed success body
    or raise RemoteError; nothing is retried here.

    The blocking requests session runs in a worker thread so callers only
    suspend at the await.
    """

    def __init__(
        self,
        settings: Settings,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.settings = settings
        self.base_url = settings.supabase_url.rstrip("/")
        self._token_provider = token_provider
        self._http = http or requests.Session()

    def set_token_provider(self, provider: Optional[Callable[[], Optional[str]]]) -> None:
        self._token_provider = provider

    def close(self) -> None:
        self._http.close()

    def _headers(self, access_token: Optional[str] = None, json_body: bool = True) -> Dict[str, str]:
        token = access_token
        if token is None and self._token_provider is not None:
            token = self._token_provider()
        headers = {
            "apikey": self.settings.supabase_anon_key,
            "Authorization": f"Bearer {token or self.settings.supabase_anon_key}",
        }
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _send(self, method: str, url: str, **kwargs) -> Any:
        try:
            resp = self._http.request(
                method, url, timeout=self.settings.http_timeout, **kwargs
            )
        except requests.RequestException as e:
            raise RemoteError(0, f"{method} {url} failed: {e}") from e

        if not resp.ok:
            raise RemoteError(resp.status_code, _error_message(resp))
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteError(resp.status_code, "Malformed response body") from e

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        _logger.debug(f"{method} {url}")
        return await asyncio.to_thread(self._send, method, url, **kwargs)

    # ---------------------------
    # Resources (tables)
    # ---------------------------

    def _resource_url(self, resource: str) -> str:
        return f"{self.base_url}/rest/v1/{resource}"

    async def read(
        self,
        resource: str,
        select: str = "*",
        filters: Optional[Filters] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Read rows of a resource.

        filters maps column -> PostgREST operand (see eq()); order is e.g.
        "created_at.desc".
        """
        params: Dict[str, Any] = {"select": select}
        params.update(filters or {})
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = int(limit)
        rows = await self._request(
            "GET", self._resource_url(resource), headers=self._headers(), params=params
        )
        return list(rows or [])

    async def create(self, resource: str, record: Mapping[str, Any]) -> List[Dict[str, Any]]:
        """Insert one record, returning the stored representation(s)."""
        headers = self._headers()
        headers["Prefer"] = "return=representation"
        rows = await self._request(
            "POST", self._resource_url(resource), headers=headers, json=dict(record)
        )
        return list(rows or [])

    async def update(
        self, resource: str, record: Mapping[str, Any], filters: Filters
    ) -> List[Dict[str, Any]]:
        if not filters:
            raise ValidationError("Refusing to update a resource without a filter.")
        headers = self._headers()
        headers["Prefer"] = "return=representation"
        rows = await self._request(
            "PATCH",
            self._resource_url(resource),
            headers=headers,
            params=dict(filters),
            json=dict(record),
        )
        return list(rows or [])

    async def delete(self, resource: str, filters: Filters) -> List[Dict[str, Any]]:
        if not filters:
            raise ValidationError("Refusing to delete from a resource without a filter.")
        headers = self._headers()
        headers["Prefer"] = "return=representation"
        rows = await self._request(
            "DELETE", self._resource_url(resource), headers=headers, params=dict(filters)
        )
        return list(rows or [])

    # ---------------------------
    # Edge functions
    # ---------------------------

    async def invoke(self, function_name: str, payload: Mapping[str, Any]) -> Any:
        return await self._request(
            "POST",
            self.settings.edge_function_url(function_name),
            headers=self._headers(),
            json=dict(payload),
        )

    # ---------------------------
    # Auth endpoints
    # ---------------------------

    async def auth(
        self,
        endpoint: str,
        payload: Optional[Mapping[str, Any]] = None,
        access_token: Optional[str] = None,
        params: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """
        POST to /auth/v1/<endpoint>. Without access_token only the API key
        authorizes the call (sign up, password grant, refresh grant).
        """
        headers = {"apikey": self.settings.supabase_anon_key, "Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return await self._request(
            "POST",
            f"{self.base_url}/auth/v1/{endpoint}",
            headers=headers,
            params=dict(params or {}),
            json=dict(payload or {}),
        )

    # ---------------------------
    # File storage
    # ---------------------------

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{path}"

    async def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> str:
        """Multipart upload of one file; returns its public URL."""
        filename = path.rsplit("/", 1)[-1]
        await self._request(
            "POST",
            f"{self.base_url}/storage/v1/object/{bucket}/{path}",
            headers=self._headers(json_body=False),
            files={"file": (filename, content, content_type)},
        )
        return self.public_url(bucket, path)
