"""FastAPI entrypoint."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from feishu_bridge.channels.base import CanonicalMessage, ReplyDispatcher
from feishu_bridge.channels.feishu.adapter import FeishuAdapter
from feishu_bridge.channels.feishu.client import FeishuClient
from feishu_bridge.channels.feishu.router import router as feishu_router
from feishu_bridge.channels.registry import all_channels, register_channel
from feishu_bridge.config import get_settings, validate_settings_for_env
from feishu_bridge.logging import configure_logging

logger = logging.getLogger(__name__)


class LoggingDispatcher:
    """Stand-in host pipeline that only records what would be dispatched."""

    async def dispatch(self, message: CanonicalMessage) -> None:
        logger.info(
            "Inbound %s from %s in %s: %s (media=%d)",
            message.kind,
            message.sender_id,
            message.conversation_id,
            message.text[:50],
            len(message.media_refs),
        )


def create_app(
    dispatcher: ReplyDispatcher | None = None,
    client: FeishuClient | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        settings = get_settings()
        validate_settings_for_env(settings)
        configure_logging(settings.log_level, app_env=settings.app_env)
        register_channel(FeishuAdapter(settings, dispatcher or LoggingDispatcher(), client))
        logger.info("Feishu channel adapter registered for app %s", settings.feishu_app_id)
        yield

    app = FastAPI(title="Feishu Bridge", version="0.1.0", lifespan=lifespan)

    @app.get("/healthz")
    async def healthz() -> dict[str, object]:
        return {"ok": True, "channels": sorted(all_channels())}

    app.include_router(feishu_router)
    return app


app = create_app()
