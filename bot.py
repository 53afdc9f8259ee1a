from __future__ import annotations

import asyncio
import logging
import socket
from typing import Optional

from aiohttp import web
from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.client.session.aiohttp import AiohttpSession
from aiogram.enums.parse_mode import ParseMode
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import Update

from drawbot.announce import BotAnnouncer, ProxyAnnouncer
from drawbot.config import Settings, configure_logging
from drawbot.eligibility import build_excluded_usernames
from drawbot.handlers import router, send_finalize_report
from drawbot.history import HistoryLog
from drawbot.lifecycle import FinalizeResult, GiveawayController
from drawbot.mproxy import MProxyClient
from drawbot.registry import GiveawayRegistry
from drawbot.scheduling import DrawScheduler
from drawbot.tokens import EphemeralStore

logger = logging.getLogger("giveaway-bot")

INSTANCE_ID = socket.gethostname()
TOKEN_PURGE_SECONDS = 60


def build_bot(settings: Settings) -> Bot:
    session: Optional[AiohttpSession] = None
    if settings.proxy_url:
        session = AiohttpSession(proxy=settings.proxy_url)
        logger.info("Bot API traffic goes through %s", settings.proxy_url)
    return Bot(settings.bot_token, session=session, default=DefaultBotProperties(parse_mode=ParseMode.HTML))


# ========= HTTP =========
async def root(request: web.Request):
    return web.Response(text="ok")


async def whoami(request: web.Request):
    bot: Bot = request.app["bot"]
    try:
        me = await bot.get_me()
    except Exception as e:
        return web.json_response({"error": str(e)}, status=500)
    return web.json_response({"bot_username": me.username, "bot_id": me.id, "instance": INSTANCE_ID})


async def tg_webhook(request: web.Request):
    try:
        data = await request.json()
        update = Update.model_validate(data)
        await request.app["dp"].feed_update(request.app["bot"], update)
        return web.Response(text="ok")
    except Exception as e:
        logger.exception("webhook handle failed: %s", e)
        return web.Response(status=500, text="error")


async def start_http(settings: Settings, bot: Bot, dp: Dispatcher) -> web.AppRunner:
    app = web.Application()
    app["bot"] = bot
    app["dp"] = dp
    app.router.add_get("/", root)
    app.router.add_get("/api/whoami", whoami)
    app.router.add_post(settings.webhook_path, tg_webhook)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host=settings.http_host, port=settings.http_port)
    await site.start()
    logger.info(f"HTTP API started on {settings.http_host}:{settings.http_port}")
    return runner


# ========= Startup =========
async def main(settings: Settings):
    configure_logging(settings.log_level)

    bot = build_bot(settings)
    dp = Dispatcher(storage=MemoryStorage())
    dp.include_router(router)

    history = HistoryLog(settings.db_path)
    await history.init()

    mproxy = MProxyClient(settings.mproxy_base_url, settings.mproxy_token, timeout=settings.mproxy_timeout)
    me = await bot.get_me()
    if settings.announce_via == "mproxy":
        announcer = ProxyAnnouncer(mproxy, me.username)
    else:
        announcer = BotAnnouncer(bot)

    tokens = EphemeralStore(default_ttl=settings.winners_token_ttl)
    scheduler = DrawScheduler()

    async def notify_operator(result: FinalizeResult) -> None:
        if result.giveaway.created_by:
            await send_finalize_report(bot, result.giveaway.created_by, result)

    controller = GiveawayController(
        GiveawayRegistry(),
        tokens,
        history,
        announcer,
        scheduler,
        mproxy,
        winners_token_ttl=settings.winners_token_ttl,
        finish_token_ttl=settings.finish_token_ttl,
        on_finalized=notify_operator,
    )

    dp["settings"] = settings
    dp["controller"] = controller
    dp["mproxy"] = mproxy
    dp["excluded_usernames"] = build_excluded_usernames(settings.exclude_usernames)

    scheduler.every("purge-tokens", TOKEN_PURGE_SECONDS, tokens.purge_expired)
    scheduler.start()
    logger.info(
        "Bot @%s starting (instance=%s, mproxy=%s, announce=%s)",
        me.username,
        INSTANCE_ID,
        "on" if mproxy.is_enabled() else "off",
        settings.announce_via,
    )

    runner = None
    try:
        if settings.public_url:
            runner = await start_http(settings, bot, dp)
            webhook_url = f"{settings.public_url}{settings.webhook_path}"
            await bot.delete_webhook(drop_pending_updates=True)
            await bot.set_webhook(url=webhook_url, allowed_updates=["message", "callback_query"])
            logger.info("Webhook set to %s", settings.public_url + "/tg-webhook/***")
            while True:
                await asyncio.sleep(3600)
        else:
            await bot.delete_webhook(drop_pending_updates=True)
            await dp.start_polling(bot, allowed_updates=["message", "callback_query"])
    finally:
        scheduler.shutdown()
        if runner is not None:
            await runner.cleanup()
        await mproxy.close()
        await bot.session.close()


if __name__ == "__main__":
    settings = Settings.from_env()
    try:
        asyncio.run(main(settings))
    except (KeyboardInterrupt, SystemExit):
        logger.info("Bot stopped")
