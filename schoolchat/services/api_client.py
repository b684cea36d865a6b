"""
School API HTTP client.
Generic async request wrapper around httpx: bearer auth, JSON or binary bodies,
and a uniform error envelope. Transport and HTTP errors are returned as
ApiErrorResponse and never raised to callers.
"""

import asyncio
import time
from typing import Any, Literal

import httpx

from schoolchat.config import settings
from schoolchat.infrastructure.observability.logging import get_logger, log_upstream_call
from schoolchat.models.api.envelope import (
    ApiErrorResponse,
    ApiResponse,
    ApiResult,
    BlobResponse,
)

logger = get_logger(__name__)

RETRY_STATUS_CODES = {429, 502, 503, 504}
RETRYABLE_METHODS = {"GET"}
MAX_TEXT_ERROR_LENGTH = 500

ResponseType = Literal["json", "blob"]

_STATUS_MESSAGES = {
    401: "Authentication required",
    403: "Access denied",
    404: "Resource not found",
    500: "Internal server error",
}


class SchoolApiClient:
    """
    Async client for the school REST API.

    Every call resolves to an ApiResponse, ApiErrorResponse or BlobResponse.
    Idempotent GETs are retried with backoff on transport errors and
    throttling/gateway status codes.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_backoff: float | None = None,
    ):
        client_config = settings.get_http_client_config()
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else client_config["timeout"]
        self.max_retries = max(
            1, max_retries if max_retries is not None else client_config["max_retries"]
        )
        self.retry_backoff = (
            retry_backoff if retry_backoff is not None else client_config["retry_backoff"]
        )
        self._client = self._create_client()

    def _create_client(self) -> httpx.AsyncClient:
        """Create async HTTP client for the school API."""
        timeout = httpx.Timeout(self.timeout)
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
        return httpx.AsyncClient(timeout=timeout, limits=limits)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def ping(self) -> bool:
        """True when the API host answers at all (any status below 500)."""
        try:
            response = await self._client.get(self.base_url, timeout=5.0)
        except httpx.RequestError as e:
            logger.warning("School API ping failed", error=str(e))
            return False
        return response.status_code < 500

    def url_for(self, endpoint: str) -> str:
        return f"{self.base_url}{endpoint}"

    def _get_headers(self, token: str | None, has_json_body: bool = True) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if has_json_body:
            headers["Content-Type"] = "application/json"
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    # =================================================================
    # PUBLIC VERBS
    # =================================================================

    async def get(
        self,
        endpoint: str,
        token: str | None = None,
        params: dict[str, Any] | None = None,
        response_type: ResponseType = "json",
    ) -> ApiResult:
        return await self.request("GET", endpoint, token=token, params=params, response_type=response_type)

    async def post(
        self,
        endpoint: str,
        data: Any = None,
        token: str | None = None,
        files: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        response_type: ResponseType = "json",
    ) -> ApiResult:
        return await self.request(
            "POST",
            endpoint,
            token=token,
            json=data,
            files=files,
            headers=headers,
            response_type=response_type,
        )

    async def put(self, endpoint: str, data: Any = None, token: str | None = None) -> ApiResult:
        return await self.request("PUT", endpoint, token=token, json=data)

    async def delete(self, endpoint: str, token: str | None = None) -> ApiResult:
        return await self.request("DELETE", endpoint, token=token)

    async def request(
        self,
        method: str,
        endpoint: str,
        token: str | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
        files: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        response_type: ResponseType = "json",
    ) -> ApiResult:
        """Execute a request and translate the outcome into an envelope."""
        url = self.url_for(endpoint)
        # Multipart bodies set their own content type
        request_headers = self._get_headers(token, has_json_body=files is None)
        if headers:
            request_headers.update(headers)

        kwargs: dict[str, Any] = {"headers": request_headers}
        if params:
            kwargs["params"] = params
        if files is not None:
            kwargs["files"] = files
            if isinstance(json, dict):
                kwargs["data"] = json
        elif json is not None:
            kwargs["json"] = json

        started = time.time()
        try:
            response = await self._request_with_retry(method, url, **kwargs)
        except httpx.RequestError as e:
            duration_ms = round((time.time() - started) * 1000, 2)
            log_upstream_call(method, endpoint, 0, duration_ms, error=str(e))
            return ApiErrorResponse(
                message="Network error while contacting the school API",
                status_code=0,
                error="Network error",
                details={"endpoint": endpoint, "error": str(e)},
            )

        duration_ms = round((time.time() - started) * 1000, 2)
        log_upstream_call(method, endpoint, response.status_code, duration_ms)
        return self._handle_api_response(response, endpoint, response_type)

    # =================================================================
    # INTERNALS
    # =================================================================

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request, retrying idempotent methods with backoff."""
        attempts = self.max_retries if method in RETRYABLE_METHODS else 1
        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < attempts:
                    backoff = self.retry_backoff * (2 ** (attempt - 1))
                    logger.debug(
                        "School API retrying request",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= attempts:
                    raise
                backoff = self.retry_backoff * (2 ** (attempt - 1))
                logger.debug(
                    "School API request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise RuntimeError("School API retry loop exhausted")

    def _handle_api_response(
        self, response: httpx.Response, endpoint: str, response_type: ResponseType
    ) -> ApiResult:
        """
        Validate a response and wrap it in an envelope.

        Args:
            response: HTTP response from the school API
            endpoint: Endpoint path for logging and error details
            response_type: "json" or "blob"

        Returns:
            ApiResult: success, error or binary envelope
        """
        # 304 Not Modified is a successful response without a body
        if response.status_code == 304:
            return ApiResponse(data={}, cached=True, status_code=304)

        if not response.is_success:
            return self._build_error(response, endpoint)

        if response_type == "blob":
            return BlobResponse(
                content=response.content,
                media_type=response.headers.get("content-type"),
                status_code=response.status_code,
            )

        try:
            body = response.json() if response.content else {}
        except ValueError as e:
            logger.error("Failed to parse school API response", endpoint=endpoint, error=str(e))
            return ApiErrorResponse(
                message="Invalid response format from server",
                status_code=response.status_code,
                error="Invalid JSON",
                details={"endpoint": endpoint},
            )

        if not isinstance(body, dict):
            return ApiErrorResponse(
                message="Unexpected response format from server",
                status_code=response.status_code,
                error="Unexpected response structure",
                details={"endpoint": endpoint, "response": body},
            )

        if body.get("status") == "error":
            return ApiErrorResponse(
                message=body.get("message") or "Request failed",
                status_code=response.status_code,
                error=body.get("error"),
                details=body,
            )

        return ApiResponse(
            data=body.get("data"),
            message=body.get("message"),
            status_code=response.status_code,
        )

    def _build_error(self, response: httpx.Response, endpoint: str) -> ApiErrorResponse:
        message = _STATUS_MESSAGES.get(
            response.status_code, f"HTTP {response.status_code}: {response.reason_phrase}"
        )
        details: Any = None

        try:
            error_data = response.json()
            details = error_data
            if isinstance(error_data, dict):
                # API-provided message wins over the generic status text
                api_message = error_data.get("message") or error_data.get("error") or error_data.get("detail")
                if isinstance(api_message, str) and api_message:
                    message = api_message
        except ValueError:
            text = response.text
            if text and len(text) < MAX_TEXT_ERROR_LENGTH:
                message = text

        logger.error(
            "School API error",
            endpoint=endpoint,
            status_code=response.status_code,
            message=message,
        )

        return ApiErrorResponse(
            message=message,
            status_code=response.status_code,
            error=response.reason_phrase,
            details=details if details is not None else {"endpoint": endpoint},
        )


school_api_client = SchoolApiClient()
