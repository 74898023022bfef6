"""Async REST client for the Salesforce data API.

Implements RemoteDataService over httpx with retry logic (tenacity,
exponential backoff 1-10s) for transient transport failures: connection
errors and timeouts. HTTP error responses are not retried.

Save calls (create/update/delete) turn API-level rejections (400/404 with
an error list body) into SaveResult(success=False) so callers can record a
per-operation failure. Any other non-2xx response raises RemoteServiceError.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from src.crmguard.config import Settings
from src.crmguard.core.errors import RemoteServiceError
from src.crmguard.remote.service import RemoteDataService, SaveError, SaveResult
from src.crmguard.remote.validators import (
    validate_connection_settings,
    validate_query,
    validate_record_data,
    validate_record_id,
    validate_sobject_name,
)

logger = structlog.get_logger(__name__)

_TRANSIENT_ERRORS = (httpx.ConnectError, httpx.TimeoutException)
_REJECTION_STATUSES = (400, 404)


def _parse_save_errors(body: Any) -> list[SaveError]:
    """Normalize the API's error-list body into SaveError objects."""
    entries = body if isinstance(body, list) else [body]
    errors: list[SaveError] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        errors.append(
            SaveError(
                message=entry.get("message") or "Unknown error",
                status_code=entry.get("errorCode") or entry.get("statusCode"),
                fields=list(entry.get("fields") or []),
            )
        )
    return errors or [SaveError(message="Unknown error")]


class SalesforceRestService(RemoteDataService):
    """Salesforce REST API client.

    Args:
        instance_url: Org instance URL (https://...my.salesforce.com).
        access_token: OAuth bearer token; token refresh is out of scope.
        api_version: REST API version, e.g. "65.0".
        timeout: Per-request timeout in seconds.
        max_retries: Attempts for transient transport failures.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
        retry_wait: Optional tenacity wait strategy override.
    """

    def __init__(
        self,
        instance_url: str,
        access_token: str,
        api_version: str = "65.0",
        timeout: float = 30.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        validate_connection_settings(instance_url, access_token, api_version)
        self._instance_url = instance_url.rstrip("/")
        self._base_url = f"{self._instance_url}/services/data/v{api_version}"
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._transport = transport
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> SalesforceRestService:
        return cls(
            instance_url=settings.SF_INSTANCE_URL,
            access_token=settings.SF_ACCESS_TOKEN,
            api_version=settings.SF_API_VERSION,
            timeout=settings.SF_TIMEOUT,
            max_retries=settings.SF_MAX_RETRIES,
            **kwargs,
        )

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client bound to this org."""
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying transient transport failures.

        Raises:
            RemoteServiceError: When retries are exhausted (status None).
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_retries),
                wait=self._retry_wait,
                retry=retry_if_exception_type(_TRANSIENT_ERRORS),
                reraise=True,
            ):
                with attempt:
                    async with self._client() as client:
                        return await client.request(method, url, **kwargs)
        except _TRANSIENT_ERRORS as exc:
            logger.error("salesforce.request_failed", method=method, url=url, error=str(exc))
            raise RemoteServiceError(f"{method} {url} failed: {exc}") from exc
        raise RemoteServiceError(f"{method} {url} failed: no attempt made")

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        error_code = None
        message = response.text
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, list) and body and isinstance(body[0], dict):
            error_code = body[0].get("errorCode")
            message = body[0].get("message") or message
        elif isinstance(body, dict):
            error_code = body.get("errorCode") or body.get("error")
            message = body.get("message") or body.get("error_description") or message
        raise RemoteServiceError(
            f"Salesforce API error ({response.status_code}): {message}",
            status_code=response.status_code,
            error_code=error_code,
        )

    async def _get_json(self, url: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        response = await self._request("GET", url, params=params)
        self._raise_for_status(response)
        return response.json()

    # ── Read API ────────────────────────────────────────────────────────────

    async def describe(self, sobject: str) -> dict[str, Any]:
        """GET /sobjects/{sobject}/describe."""
        validate_sobject_name(sobject)
        return await self._get_json(f"{self._base_url}/sobjects/{sobject}/describe")

    async def describe_global(self) -> dict[str, Any]:
        """GET /sobjects."""
        return await self._get_json(f"{self._base_url}/sobjects")

    async def query(self, soql: str, tooling: bool = False) -> dict[str, Any]:
        """Run SOQL, following nextRecordsUrl until all pages are fetched."""
        validate_query(soql)
        endpoint = "tooling/query" if tooling else "query"
        result = await self._get_json(f"{self._base_url}/{endpoint}", params={"q": soql.strip()})

        records = list(result.get("records") or [])
        while not result.get("done", True) and result.get("nextRecordsUrl"):
            result = await self._get_json(f"{self._instance_url}{result['nextRecordsUrl']}")
            records.extend(result.get("records") or [])

        logger.debug("salesforce.query_complete", tooling=tooling, records=len(records))
        return {"totalSize": result.get("totalSize", len(records)), "done": True, "records": records}

    async def search(self, sosl: str) -> dict[str, Any]:
        """GET /search?q=... returning {"searchRecords": [...]}."""
        validate_query(sosl)
        result = await self._get_json(f"{self._base_url}/search", params={"q": sosl})
        if isinstance(result, list):
            return {"searchRecords": result}
        return {"searchRecords": result.get("searchRecords") or []}

    # ── Write API ───────────────────────────────────────────────────────────

    async def _save(
        self,
        method: str,
        url: str,
        record_id: str | None,
        json: dict[str, Any] | None = None,
    ) -> SaveResult:
        response = await self._request(method, url, json=json)
        if response.status_code in _REJECTION_STATUSES:
            try:
                body = response.json() if response.content else None
            except ValueError:
                body = {"message": response.text}
            errors = _parse_save_errors(body)
            logger.warning(
                "salesforce.save_rejected",
                method=method,
                url=url,
                status=response.status_code,
                error=errors[0].message,
            )
            return SaveResult(success=False, id=record_id, errors=errors)
        self._raise_for_status(response)

        if response.status_code == 204 or not response.content:
            return SaveResult(success=True, id=record_id)
        body = response.json()
        return SaveResult(
            success=bool(body.get("success", True)),
            id=body.get("id") or record_id,
            errors=_parse_save_errors(body["errors"]) if body.get("errors") else [],
        )

    async def create(self, sobject: str, data: dict[str, Any]) -> SaveResult:
        """POST /sobjects/{sobject}."""
        validate_sobject_name(sobject)
        validate_record_data(data)
        result = await self._save("POST", f"{self._base_url}/sobjects/{sobject}", None, json=dict(data))
        if result.success:
            logger.info("salesforce.record_created", sobject=sobject, record_id=result.id)
        return result

    async def update(self, sobject: str, record_id: str, data: dict[str, Any]) -> SaveResult:
        """PATCH /sobjects/{sobject}/{id}; the id travels in the URL."""
        validate_sobject_name(sobject)
        validate_record_id(record_id)
        validate_record_data(data)
        body = {k: v for k, v in data.items() if k != "Id"}
        result = await self._save("PATCH", f"{self._base_url}/sobjects/{sobject}/{record_id}", record_id, json=body)
        if result.success:
            logger.info("salesforce.record_updated", sobject=sobject, record_id=record_id)
        return result

    async def delete(self, sobject: str, record_id: str) -> SaveResult:
        """DELETE /sobjects/{sobject}/{id}."""
        validate_sobject_name(sobject)
        validate_record_id(record_id)
        result = await self._save("DELETE", f"{self._base_url}/sobjects/{sobject}/{record_id}", record_id)
        if result.success:
            logger.info("salesforce.record_deleted", sobject=sobject, record_id=record_id)
        return result
