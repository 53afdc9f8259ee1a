from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

import pytz
from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _clean(raw: Optional[str]) -> str:
    # .env values sometimes arrive wrapped in quotes
    return (raw or "").strip().strip('"').strip("'").strip()


def env_bool(name: str, *, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = _clean(raw).lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


def env_int(name: str, *, default: Optional[int] = None) -> Optional[int]:
    raw = _clean(os.getenv(name))
    if raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, *, default: float) -> float:
    raw = _clean(os.getenv(name))
    if raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    bot_token: str
    default_tz: str = "Europe/Moscow"
    db_path: str = "giveaway.db"
    log_level: str = "INFO"

    mproxy_base_url: str = ""
    mproxy_token: str = ""
    mproxy_timeout: float = 30.0

    exclude_usernames: str = ""
    enable_post_giveaway: bool = True
    announce_via: str = "bot"  # bot|mproxy

    winners_token_ttl: float = 10 * 60
    finish_token_ttl: float = 24 * 60 * 60

    proxy_url: str = ""
    public_url: str = ""
    http_host: str = "0.0.0.0"
    http_port: int = 10000

    @property
    def tz(self):
        return pytz.timezone(self.default_tz)

    @property
    def mproxy_enabled(self) -> bool:
        return bool(self.mproxy_base_url and self.mproxy_token)

    @property
    def webhook_path(self) -> str:
        return f"/tg-webhook/{self.bot_token}"

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()

        bot_token = _clean(os.getenv("BOT_TOKEN"))
        if not bot_token:
            raise SystemExit("BOT_TOKEN is not set. Put it into .env")

        base_url = _clean(os.getenv("MPROXY_BASE_URL")).rstrip("/")
        # the embedded proxy listens on localhost unless told otherwise
        if not base_url and env_bool("ENABLE_MPROXY"):
            base_url = f"http://127.0.0.1:{env_int('MPROXY_PORT', default=8081)}"

        announce_via = _clean(os.getenv("ANNOUNCE_VIA")).lower() or "bot"
        if announce_via not in ("bot", "mproxy"):
            raise SystemExit(f"ANNOUNCE_VIA must be 'bot' or 'mproxy', got {announce_via!r}")

        return cls(
            bot_token=bot_token,
            default_tz=_clean(os.getenv("DEFAULT_TZ")) or "Europe/Moscow",
            db_path=_clean(os.getenv("DB_PATH")) or "giveaway.db",
            log_level=(_clean(os.getenv("LOG_LEVEL")) or "INFO").upper(),
            mproxy_base_url=base_url,
            mproxy_token=_clean(os.getenv("MPROXY_TOKEN")),
            mproxy_timeout=env_float("MPROXY_TIMEOUT", default=30.0),
            exclude_usernames=os.getenv("EXCLUDE_USERNAMES", ""),
            enable_post_giveaway=env_bool("ENABLE_POST_GIVEAWAY", default=True),
            announce_via=announce_via,
            winners_token_ttl=env_float("WINNERS_TOKEN_TTL", default=10 * 60),
            finish_token_ttl=env_float("FINISH_TOKEN_TTL", default=24 * 60 * 60),
            proxy_url=_clean(os.getenv("HTTPS_PROXY") or os.getenv("HTTP_PROXY")),
            public_url=_clean(os.getenv("PUBLIC_URL")).rstrip("/"),
            http_host=_clean(os.getenv("HOST")) or "0.0.0.0",
            http_port=env_int("PORT", default=10000),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # aiogram logs every update at INFO
    logging.getLogger("aiogram.event").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
