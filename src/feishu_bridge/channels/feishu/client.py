"""Feishu open API client (messages, resources, uploads)."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import httpx

from feishu_bridge.channels.feishu.media import ByteSource, StreamSource
from feishu_bridge.config import Settings
from feishu_bridge.errors import ConfigError, TransportError

logger = logging.getLogger(__name__)

_TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"
_TOKEN_REFRESH_MARGIN_SECONDS = 60


class FeishuClient:
    def __init__(
        self,
        *,
        app_id: str,
        app_secret: str,
        base_url: str = "https://open.feishu.cn",
        timeout_seconds: float = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not app_id.strip() or not app_secret.strip():
            raise ConfigError("feishu app_id and app_secret are required")
        self._app_id = app_id.strip()
        self._app_secret = app_secret.strip()
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport
        self._token = ""
        self._token_deadline = 0.0

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> FeishuClient:
        return cls(
            app_id=settings.feishu_app_id,
            app_secret=settings.feishu_app_secret,
            base_url=settings.feishu_base_url,
            timeout_seconds=settings.feishu_http_timeout_seconds,
            transport=transport,
        )

    @property
    def app_id(self) -> str:
        return self._app_id

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _tenant_token(self) -> str:
        if self._token and time.monotonic() < self._token_deadline:
            return self._token
        async with self._client() as client:
            response = await client.post(
                _TOKEN_PATH,
                json={"app_id": self._app_id, "app_secret": self._app_secret},
            )
        body = _decode(response, "tenant_access_token")
        token = str(body.get("tenant_access_token") or "")
        if not token:
            raise TransportError("tenant_access_token missing from response", retryable=False)
        expire = int(body.get("expire") or 0)
        self._token = token
        self._token_deadline = time.monotonic() + max(expire - _TOKEN_REFRESH_MARGIN_SECONDS, 0)
        return token

    async def _call(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        data: dict[str, str] | None = None,
        files: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {await self._tenant_token()}"}
        async with self._client() as client:
            response = await client.request(
                method,
                path,
                params=params,
                json=json_body,
                data=data,
                files=files,
                headers=headers,
            )
        body = _decode(response, path)
        payload = body.get("data")
        return payload if isinstance(payload, dict) else {}

    async def send_message(
        self,
        *,
        receive_id_type: str,
        receive_id: str,
        msg_type: str,
        content: dict[str, Any],
    ) -> str | None:
        """Create a message; returns the new message id."""
        data = await self._call(
            "POST",
            "/open-apis/im/v1/messages",
            params={"receive_id_type": receive_id_type},
            json_body={
                "receive_id": receive_id,
                "msg_type": msg_type,
                "content": json.dumps(content, ensure_ascii=False),
            },
        )
        message_id = data.get("message_id")
        return str(message_id) if message_id else None

    async def patch_message(self, message_id: str, content: dict[str, Any]) -> None:
        """Replace the card content of an already delivered message."""
        await self._call(
            "PATCH",
            f"/open-apis/im/v1/messages/{message_id}",
            json_body={"content": json.dumps(content, ensure_ascii=False)},
        )

    async def fetch_resource(
        self, message_id: str, file_key: str, resource_type: str
    ) -> ByteSource:
        """Stream a message resource; request errors surface while iterating."""
        token = await self._tenant_token()
        return StreamSource(self._resource_chunks(token, message_id, file_key, resource_type))

    async def _resource_chunks(
        self, token: str, message_id: str, file_key: str, resource_type: str
    ) -> AsyncIterator[bytes]:
        async with self._client() as client:
            async with client.stream(
                "GET",
                f"/open-apis/im/v1/messages/{message_id}/resources/{file_key}",
                params={"type": resource_type},
                headers={"Authorization": f"Bearer {token}"},
            ) as response:
                content_type = response.headers.get("Content-Type", "")
                if response.status_code >= 400 or content_type.startswith("application/json"):
                    # Resource errors come back as a JSON envelope instead of bytes.
                    await response.aread()
                    _decode(response, "message resource")
                    raise TransportError(f"message resource {file_key} returned no body")
                async for chunk in response.aiter_bytes():
                    yield chunk

    async def upload_image(self, path: Path) -> str:
        with path.open("rb") as handle:
            data = await self._call(
                "POST",
                "/open-apis/im/v1/images",
                data={"image_type": "message"},
                files={"image": (path.name, handle.read())},
            )
        image_key = str(data.get("image_key") or "")
        if not image_key:
            raise TransportError(f"image upload for {path.name} returned no image_key")
        return image_key

    async def upload_file(self, path: Path, file_type: str = "stream") -> str:
        with path.open("rb") as handle:
            data = await self._call(
                "POST",
                "/open-apis/im/v1/files",
                data={"file_type": file_type, "file_name": path.name},
                files={"file": (path.name, handle.read())},
            )
        file_key = str(data.get("file_key") or "")
        if not file_key:
            raise TransportError(f"file upload for {path.name} returned no file_key")
        return file_key


def _decode(response: httpx.Response, what: str) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    code = body.get("code")
    if response.status_code >= 400 or (code not in (None, 0)):
        msg = str(body.get("msg") or response.reason_phrase or "request failed")
        logger.warning(
            "Feishu %s failed: status=%s code=%s msg=%s",
            what,
            response.status_code,
            code,
            msg,
        )
        raise TransportError(
            f"{what}: {msg}",
            code=int(code) if isinstance(code, int) else None,
            retryable=response.status_code >= 500 or response.status_code == 429,
        )
    return body
