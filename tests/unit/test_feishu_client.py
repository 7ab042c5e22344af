import json
from pathlib import Path

import httpx
import pytest

from feishu_bridge.channels.base import MediaKind
from feishu_bridge.channels.feishu.client import FeishuClient
from feishu_bridge.channels.feishu.media import MediaResolver
from feishu_bridge.config import get_settings
from feishu_bridge.errors import ConfigError, TransportError


class _FakeOpenApi:
    """Minimal stand-in for the Feishu open API behind httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_calls = 0
        self.send_code = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/tenant_access_token/internal"):
            self.token_calls += 1
            return httpx.Response(
                200, json={"code": 0, "msg": "ok", "tenant_access_token": "t-abc", "expire": 7200}
            )
        if path == "/open-apis/im/v1/messages" and request.method == "POST":
            if self.send_code:
                return httpx.Response(400, json={"code": self.send_code, "msg": "invalid receive_id"})
            return httpx.Response(200, json={"code": 0, "msg": "ok", "data": {"message_id": "om_new"}})
        if path.startswith("/open-apis/im/v1/messages/") and request.method == "PATCH":
            return httpx.Response(200, json={"code": 0, "msg": "ok", "data": {}})
        if "/resources/" in path:
            if path.endswith("/missing"):
                return httpx.Response(404, json={"code": 234003, "msg": "File not in msg."})
            return httpx.Response(
                200, content=b"\x89PNG....", headers={"Content-Type": "image/png"}
            )
        if path == "/open-apis/im/v1/images":
            return httpx.Response(200, json={"code": 0, "data": {"image_key": "img_up"}})
        if path == "/open-apis/im/v1/files":
            return httpx.Response(200, json={"code": 0, "data": {"file_key": "file_up"}})
        if path == "/open-apis/im/v1/unavailable":
            return httpx.Response(503, text="upstream down")
        return httpx.Response(404, json={"code": 99991400, "msg": "no route"})


@pytest.fixture
def api() -> _FakeOpenApi:
    return _FakeOpenApi()


@pytest.fixture
def client(api: _FakeOpenApi) -> FeishuClient:
    return FeishuClient(
        app_id="cli_test_app",
        app_secret="test-secret",
        base_url="https://open.feishu.test",
        transport=httpx.MockTransport(api),
    )


def test_empty_credentials_rejected() -> None:
    with pytest.raises(ConfigError):
        FeishuClient(app_id="", app_secret="x")
    with pytest.raises(ConfigError):
        FeishuClient(app_id="cli_x", app_secret="   ")


def test_from_settings() -> None:
    client = FeishuClient.from_settings(get_settings())
    assert client.app_id == "cli_test_app"


@pytest.mark.asyncio
async def test_send_message_posts_serialized_content(client: FeishuClient, api: _FakeOpenApi) -> None:
    message_id = await client.send_message(
        receive_id_type="open_id",
        receive_id="ou_user",
        msg_type="text",
        content={"text": "你好"},
    )
    assert message_id == "om_new"

    request = api.requests[-1]
    assert request.url.params["receive_id_type"] == "open_id"
    assert request.headers["Authorization"] == "Bearer t-abc"
    body = json.loads(request.content)
    assert body["receive_id"] == "ou_user"
    assert body["msg_type"] == "text"
    assert json.loads(body["content"]) == {"text": "你好"}


@pytest.mark.asyncio
async def test_token_is_cached_between_calls(client: FeishuClient, api: _FakeOpenApi) -> None:
    await client.send_message(receive_id_type="chat_id", receive_id="oc_1", msg_type="text", content={"text": "a"})
    await client.patch_message("om_new", {"elements": []})
    assert api.token_calls == 1
    assert api.requests[-1].method == "PATCH"
    assert api.requests[-1].url.path == "/open-apis/im/v1/messages/om_new"


@pytest.mark.asyncio
async def test_error_code_raises_transport_error(client: FeishuClient, api: _FakeOpenApi) -> None:
    api.send_code = 230001
    with pytest.raises(TransportError) as excinfo:
        await client.send_message(receive_id_type="chat_id", receive_id="bad", msg_type="text", content={})
    assert excinfo.value.code == 230001
    assert not excinfo.value.retryable
    assert "invalid receive_id" in str(excinfo.value)


@pytest.mark.asyncio
async def test_server_error_is_retryable(client: FeishuClient) -> None:
    with pytest.raises(TransportError) as excinfo:
        await client._call("GET", "/open-apis/im/v1/unavailable")
    assert excinfo.value.retryable
    assert excinfo.value.code is None


@pytest.mark.asyncio
async def test_fetch_resource_returns_body(client: FeishuClient, api: _FakeOpenApi) -> None:
    source = await client.fetch_resource("om_1", "img_key", "image")
    chunks = [chunk async for chunk in source.aiter_bytes()]
    assert b"".join(chunks) == b"\x89PNG...."
    request = api.requests[-1]
    assert request.url.path == "/open-apis/im/v1/messages/om_1/resources/img_key"
    assert request.url.params["type"] == "image"


@pytest.mark.asyncio
async def test_fetch_resource_error_envelope(client: FeishuClient) -> None:
    source = await client.fetch_resource("om_1", "missing", "file")
    with pytest.raises(TransportError) as excinfo:
        async for _ in source.aiter_bytes():
            pass
    assert excinfo.value.code == 234003


@pytest.mark.asyncio
async def test_uploads(client: FeishuClient, api: _FakeOpenApi, tmp_path: Path, png_bytes: bytes) -> None:
    image = tmp_path / "a.png"
    image.write_bytes(png_bytes)
    assert await client.upload_image(image) == "img_up"
    assert b'name="image_type"' in api.requests[-1].content

    doc = tmp_path / "report.pdf"
    doc.write_bytes(b"%PDF-1.4")
    assert await client.upload_file(doc) == "file_up"
    assert b'name="file_type"' in api.requests[-1].content
    assert b"stream" in api.requests[-1].content


@pytest.mark.asyncio
async def test_streamed_resources_feed_media_resolver(client: FeishuClient, tmp_path: Path) -> None:
    resolver = MediaResolver(client, tmp_path)
    ref = await resolver.fetch("img_key", "om_1", MediaKind.IMAGE)
    assert ref.available
    assert ref.local_path is not None and ref.local_path.read_bytes() == b"\x89PNG...."

    missing = await resolver.fetch("missing", "om_1", MediaKind.IMAGE)
    assert not missing.available
    assert not any(tmp_path.rglob("*.part"))
