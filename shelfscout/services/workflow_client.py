"""
HTTP client for the workflow backend.

Posts the transcript, the photo and the mode flags as multipart form
data and parses the answer leniently.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import httpx

from ..config import BackendConfig
from ..exceptions import (
    BackendNetworkError,
    BackendServerError,
    BackendTimeoutError,
    CaptureFailedError,
)
from ..interaction.cancel import CancelToken
from ..schemas.workflow import BackendResponse, WorkflowRequest, parse_backend_response

logger = logging.getLogger("shelfscout.services.workflow_client")


class WorkflowClient:
    """Async workflow webhook client."""

    def __init__(
        self,
        config: Optional[BackendConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or BackendConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=self._config.timeout_s,
                    transport=self._transport,
                )
            return self._client

    async def close(self) -> None:
        async with self._lock:
            if self._client:
                await self._client.aclose()
                self._client = None

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    async def send_request(
        self,
        payload: WorkflowRequest,
        cancel_token: CancelToken,
    ) -> BackendResponse:
        """Post one request. cancel_token aborts the in-flight call.

        Raises:
            RequestCancelledError: the token was cancelled
            CaptureFailedError: the photo file cannot be read
            BackendNetworkError / BackendTimeoutError / BackendServerError
        """
        cancel_token.raise_if_cancelled()
        return await cancel_token.run(self._post(payload))

    async def _post(self, payload: WorkflowRequest) -> BackendResponse:
        try:
            image = await asyncio.to_thread(Path(payload.image_path).read_bytes)
        except OSError as e:
            raise CaptureFailedError(f"Cannot read photo {payload.image_path}: {e}") from e

        files = {"image": ("photo.jpg", image, payload.image_content_type)}
        client = await self._ensure_client()

        logger.info(
            "Sending to workflow: text=%r navigation=%s reaching=%s session=%s",
            payload.text[:50],
            payload.navigation,
            payload.reaching_flag,
            payload.session_id,
        )
        try:
            response = await client.post(
                self._config.workflow_url,
                data=payload.form_fields(),
                files=files,
                headers=self._headers(),
            )
        except httpx.TimeoutException as e:
            raise BackendTimeoutError(str(e)) from e
        except httpx.RequestError as e:
            raise BackendNetworkError(str(e)) from e

        if response.status_code >= 400:
            logger.error(
                "Workflow returned HTTP %d: %s",
                response.status_code,
                response.text[:200],
            )
            raise BackendServerError(response.status_code, response.text[:200])

        try:
            data = response.json()
        except ValueError:
            data = response.text

        parsed = parse_backend_response(data)
        logger.info(
            "Workflow response: text=%r navigation=%s reaching=%s handoff=%s",
            parsed.text[:50],
            parsed.navigation_flag,
            parsed.reaching_flag,
            parsed.native_handoff_flag,
        )
        return parsed
