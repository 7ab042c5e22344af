import json
from pathlib import Path
from typing import Any

import pytest

from feishu_bridge.channels.base import CanonicalMessage
from feishu_bridge.channels.feishu.media import ByteSource, StreamSource
from feishu_bridge.channels.registry import _reset as _reset_channels
from feishu_bridge.config import get_settings
from feishu_bridge.errors import TransportError


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("FEISHU_APP_ID", "cli_test_app")
    monkeypatch.setenv("FEISHU_APP_SECRET", "test-secret")
    monkeypatch.setenv("FEISHU_VERIFICATION_TOKEN", "")
    monkeypatch.setenv("FEISHU_ALLOWED_CHAT_IDS", "")
    monkeypatch.setenv("FEISHU_MEDIA_DIR", str(tmp_path / "media"))
    get_settings.cache_clear()
    _reset_channels()
    yield
    get_settings.cache_clear()
    _reset_channels()


class FakeMediaTransport:
    """Serves resource bytes by key and records every fetch."""

    def __init__(self, resources: dict[str, bytes] | None = None) -> None:
        self.resources = dict(resources or {})
        self.calls: list[tuple[str, str, str]] = []

    async def fetch_resource(
        self, message_id: str, file_key: str, resource_type: str
    ) -> ByteSource:
        self.calls.append((message_id, file_key, resource_type))
        if file_key not in self.resources:
            raise TransportError(f"resource {file_key} not found", code=234003)
        return StreamSource(_chunked(self.resources[file_key]))


async def _chunked(data: bytes, size: int = 16):
    for start in range(0, len(data), size):
        yield data[start : start + size]


class FakeMessageTransport:
    """Records outbound creates/patches; optionally fails patches."""

    def __init__(self, *, fail_patch: bool = False, fail_send: bool = False) -> None:
        self.fail_patch = fail_patch
        self.fail_send = fail_send
        self.sent: list[dict[str, Any]] = []
        self.patched: list[tuple[str, dict[str, Any]]] = []
        self.uploads: list[tuple[str, str]] = []

    async def send_message(
        self,
        *,
        receive_id_type: str,
        receive_id: str,
        msg_type: str,
        content: dict[str, Any],
    ) -> str | None:
        if self.fail_send:
            raise TransportError("send rejected", code=230001)
        self.sent.append(
            {
                "receive_id_type": receive_id_type,
                "receive_id": receive_id,
                "msg_type": msg_type,
                "content": content,
            }
        )
        return f"om_sent_{len(self.sent)}"

    async def patch_message(self, message_id: str, content: dict[str, Any]) -> None:
        if self.fail_patch:
            raise TransportError("message not found", code=230011)
        self.patched.append((message_id, content))

    async def upload_image(self, path: Path) -> str:
        self.uploads.append(("image", path.name))
        return "img_uploaded_key"

    async def upload_file(self, path: Path, file_type: str = "stream") -> str:
        self.uploads.append((file_type, path.name))
        return "file_uploaded_key"


class RecordingDispatcher:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.messages: list[CanonicalMessage] = []

    async def dispatch(self, message: CanonicalMessage) -> None:
        if self.fail:
            raise RuntimeError("host pipeline unavailable")
        self.messages.append(message)


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES


@pytest.fixture
def text_event() -> dict[str, Any]:
    return {
        "message": {
            "message_id": "om_text_test",
            "chat_id": "oc_test_chat",
            "chat_type": "group",
            "message_type": "text",
            "content": json.dumps({"text": "Hello Regression"}),
        },
        "sender": {"sender_id": {"open_id": "ou_tester"}},
    }


@pytest.fixture
def image_event() -> dict[str, Any]:
    return {
        "message": {
            "message_id": "om_image_test",
            "chat_id": "oc_test_chat",
            "message_type": "image",
            "content": json.dumps({"image_key": "img_test_key"}),
        },
        "sender": {"sender_id": {"open_id": "ou_tester"}},
    }


@pytest.fixture
def post_event() -> dict[str, Any]:
    return {
        "message": {
            "message_id": "om_post_test",
            "chat_id": "oc_test_chat",
            "message_type": "post",
            "content": {
                "zh_cn": {
                    "title": "Rich Text Test",
                    "content": [
                        [
                            {"tag": "text", "text": "Text part"},
                            {"tag": "img", "image_key": "img_in_post_key"},
                        ]
                    ],
                }
            },
        },
        "sender": {"sender_id": {"open_id": "ou_tester"}},
    }


@pytest.fixture
def button_click_event() -> dict[str, Any]:
    return {
        "open_chat_id": "oc_test_chat",
        "open_message_id": "om_card_test",
        "action": {"value": {"action": "click_me"}},
        "operator": {"open_id": "ou_tester"},
    }


@pytest.fixture
def media_transport() -> FakeMediaTransport:
    return FakeMediaTransport(
        {
            "img_test_key": PNG_BYTES,
            "img_in_post_key": PNG_BYTES,
            "file_audio_key": b"OggS\x00\x02" + b"\x00" * 22 + b"OpusHead",
        }
    )


@pytest.fixture
def message_transport() -> FakeMessageTransport:
    return FakeMessageTransport()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()
