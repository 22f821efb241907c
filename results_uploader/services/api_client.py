"""HTTP adapter for the results service API."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class ApiError(RuntimeError):
    """Raised when a request to the results service fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class HTTPAPIClient:
    """
    HTTP client adapter for API calls.

    Implements IAPIClient protocol. Requests are sent once; failures are
    raised as ApiError carrying a message suitable for the caller.
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def post(self, endpoint: str, json: Dict, format_error: str = "Incorrect data format.") -> Dict[str, Any]:
        """
        POST a JSON body and return the 'data' object of a successful response.

        Args:
            endpoint: Path relative to the base URL
            json: Request body
            format_error: Message used when the body cannot be serialized

        Returns:
            The 'data' object of the response

        Raises:
            ApiError: On serialization, transport or server errors
        """
        if not self._client:
            raise RuntimeError("HTTPAPIClient not initialized. Use 'async with' context.")

        content = _encode(json, format_error)

        try:
            response = await self._client.post(
                endpoint,
                content=content,
                headers={"Content-Type": "application/json; charset=UTF-8"},
            )
        except httpx.TimeoutException as exc:
            logger.warning(f"Timeout on POST {endpoint}: {exc}")
            raise ApiError("Unable to connect.") from exc
        except httpx.RequestError as exc:
            logger.warning(f"Request error on POST {endpoint}: {exc}")
            raise ApiError("Unable to connect.") from exc

        try:
            body = response.json()
        except ValueError as exc:
            logger.warning(f"Undecodable response from POST {endpoint} ({response.status_code})")
            raise ApiError("Error processing response.", response.status_code) from exc

        if response.status_code != 200:
            raise ApiError(_error_message(body), response.status_code)

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise ApiError("Error processing response.", response.status_code)
        return data


def _encode(payload: Dict, format_error: str) -> bytes:
    try:
        return json.dumps(payload).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise ApiError(format_error) from exc


def _error_message(body: Any) -> str:
    try:
        message = body["error"]["message"]
    except (KeyError, TypeError):
        return "Error processing response."
    return str(message)
