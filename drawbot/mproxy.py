from __future__ import annotations

import asyncio
import logging
import urllib.parse
from typing import Any, Dict, Iterable, List, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from .errors import ProxyError
from .models import Candidate

logger = logging.getLogger(__name__)


class MProxyClient:
    """HTTP client for MProxy, the REST wrapper around the user-account client.

    The user account can list group members and write to people the bot
    has never talked to, which the Bot API cannot do. Every failure comes
    out as ``ProxyError``; nothing is retried here.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 30.0,
        session: Optional[ClientSession] = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.token = token or ""
        self.timeout = ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        if not self.base_url:
            logger.warning("MProxy base URL is not set; MTProto features are disabled")

    def is_enabled(self) -> bool:
        return bool(self.base_url and self.token)

    async def __aenter__(self) -> "MProxyClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    @staticmethod
    def _quote(target: str) -> str:
        return urllib.parse.quote(str(target), safe="")

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        channel: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if not self.is_enabled():
            raise ProxyError("MProxy is not configured", operation=operation, channel=channel)
        headers = {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(method, url, params=params, json=payload, headers=headers) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise ProxyError(
                        f"MProxy {operation} error {resp.status}: {text}",
                        status=resp.status,
                        operation=operation,
                        channel=channel,
                    )
                return await resp.json(content_type=None)
        except ProxyError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ProxyError(f"MProxy {operation} failed: {e}", operation=operation, channel=channel) from e

    async def fetch_members(self, channel: str, *, limit: int = 1000, offset: int = 0) -> List[Candidate]:
        data = await self._request(
            "GET",
            f"/channels/{self._quote(channel)}/members",
            "members",
            channel=channel,
            params={"limit": limit, "offset": offset},
        )
        return [Candidate.from_payload(item) for item in data or []]

    async def fetch_all_members(self, channel: str, *, page_size: int = 200, hard_max: int = 20000) -> List[Candidate]:
        members: List[Candidate] = []
        offset = 0
        while True:
            page = await self.fetch_members(channel, limit=page_size, offset=offset)
            if not page:
                break
            members.extend(page)
            offset += len(page)
            if len(members) >= hard_max:
                logger.warning("Member listing for %s stopped at hard max %d", channel, hard_max)
                break
        return members[:hard_max]

    async def fetch_admins(self, channel: str, *, limit: int = 10000, offset: int = 0) -> List[Candidate]:
        data = await self._request(
            "GET",
            f"/channels/{self._quote(channel)}/members",
            "admins",
            channel=channel,
            params={"role": "admins", "limit": limit, "offset": offset},
        )
        return [Candidate.from_payload(item) for item in data or []]

    async def me(self) -> Optional[Candidate]:
        data = await self._request("GET", "/me", "me")
        if not data:
            return None
        return Candidate.from_payload(data)

    async def is_member(self, target: str) -> bool:
        data = await self._request("GET", f"/channels/{self._quote(target)}/isMember", "isMember", channel=target)
        return bool((data or {}).get("is_member"))

    async def join_target(self, target: str) -> Dict[str, Any]:
        return await self._request("POST", "/join", "join", channel=target, payload={"target": target})

    async def send_messages(self, recipients: Iterable[str], text: str) -> Dict[str, int]:
        user_ids = [str(r) for r in recipients]
        data = await self._request("POST", "/sendMessages", "sendMessages", payload={"user_ids": user_ids, "text": text})
        data = data or {}
        return {"sent": int(data.get("sent", 0)), "total": int(data.get("total", len(user_ids)))}

    async def post_message(self, channel: str, *, text: str, button_text: str, url: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/channels/{self._quote(channel)}/post",
            "post",
            channel=channel,
            payload={"text": text, "button_text": button_text, "url": url},
        )

    async def edit_button(self, channel: str, *, message_id: int, button_text: str, url: Optional[str]) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/channels/{self._quote(channel)}/editButton",
            "editButton",
            channel=channel,
            payload={"message_id": message_id, "button_text": button_text, "url": url},
        )

    async def edit_text(self, channel: str, *, message_id: int, text: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/channels/{self._quote(channel)}/editText",
            "editText",
            channel=channel,
            payload={"message_id": message_id, "text": text},
        )
