"""Tests for the MProxy HTTP client against a local aiohttp server."""

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from drawbot.errors import ProxyError
from drawbot.mproxy import MProxyClient

TOKEN = "secret-token"


def _roster(n):
    return [{"id": i, "username": f"u{i}", "first_name": f"U{i}", "is_bot": False} for i in range(1, n + 1)]


class FakeMProxyServer:
    def __init__(self, members=(), admins=()):
        self.members = list(members)
        self.admins = list(admins)
        self.requests = []

    def app(self):
        app = web.Application(middlewares=[self.auth])
        app.router.add_get("/channels/{channel}/members", self.list_members)
        app.router.add_get("/channels/{channel}/isMember", self.is_member)
        app.router.add_get("/me", self.me)
        app.router.add_post("/join", self.join)
        app.router.add_post("/sendMessages", self.send_messages)
        app.router.add_post("/channels/{channel}/post", self.post)
        app.router.add_get("/broken", self.broken)
        return app

    @web.middleware
    async def auth(self, request, handler):
        self.requests.append(request)
        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return web.json_response({"error": "unauthorized"}, status=401)
        return await handler(request)

    async def list_members(self, request):
        source = self.admins if request.query.get("role") == "admins" else self.members
        limit = int(request.query["limit"])
        offset = int(request.query["offset"])
        return web.json_response(source[offset : offset + limit])

    async def is_member(self, request):
        return web.json_response({"is_member": request.match_info["channel"] == "@joined"})

    async def me(self, request):
        return web.json_response({"id": 777, "username": "client", "first_name": "Client"})

    async def join(self, request):
        body = await request.json()
        if body["target"] == "@private":
            return web.Response(status=500, text="CHANNEL_PRIVATE")
        return web.json_response({"ok": True})

    async def send_messages(self, request):
        body = await request.json()
        return web.json_response({"sent": len(body["user_ids"]) - 1, "total": len(body["user_ids"])})

    async def post(self, request):
        body = await request.json()
        return web.json_response({"message_id": 55, "echo": body})

    async def broken(self, request):
        return web.Response(text="not json")


@pytest_asyncio.fixture
async def server():
    fake = FakeMProxyServer(members=_roster(12), admins=_roster(2))
    test_server = test_utils.TestServer(fake.app())
    await test_server.start_server()
    fake.url = str(test_server.make_url("")).rstrip("/")
    yield fake
    await test_server.close()


@pytest_asyncio.fixture
async def client(server):
    async with MProxyClient(server.url, TOKEN, timeout=5) as c:
        yield c


class TestMembers:
    @pytest.mark.asyncio
    async def test_paginates_until_empty_page(self, client, server):
        members = await client.fetch_all_members("@g", page_size=5)
        assert [m.user_id for m in members] == [str(i) for i in range(1, 13)]
        offsets = [r.query["offset"] for r in server.requests]
        assert offsets == ["0", "5", "10", "12"]
        assert server.requests[0].match_info["channel"] == "@g"

    @pytest.mark.asyncio
    async def test_hard_max(self, client):
        members = await client.fetch_all_members("@g", page_size=5, hard_max=7)
        assert len(members) == 7

    @pytest.mark.asyncio
    async def test_admins(self, client, server):
        admins = await client.fetch_admins("@g")
        assert [a.username for a in admins] == ["u1", "u2"]
        assert server.requests[-1].query["role"] == "admins"


class TestAccount:
    @pytest.mark.asyncio
    async def test_me(self, client):
        me = await client.me()
        assert me.user_id == "777"
        assert me.username == "client"

    @pytest.mark.asyncio
    async def test_is_member(self, client):
        assert await client.is_member("@joined") is True
        assert await client.is_member("@g") is False

    @pytest.mark.asyncio
    async def test_join_error_carries_status(self, client):
        with pytest.raises(ProxyError) as exc:
            await client.join_target("@private")
        assert exc.value.status == 500
        assert exc.value.channel == "@private"
        assert "CHANNEL_PRIVATE" in str(exc.value)


class TestMessages:
    @pytest.mark.asyncio
    async def test_send_messages(self, client):
        report = await client.send_messages([1, 2, 3], "hi")
        assert report == {"sent": 2, "total": 3}

    @pytest.mark.asyncio
    async def test_post_message(self, client):
        data = await client.post_message("@g", text="Prize", button_text="Join", url="https://t.me/bot?start=x")
        assert data["message_id"] == 55
        assert data["echo"]["button_text"] == "Join"


class TestFailures:
    @pytest.mark.asyncio
    async def test_wrong_token(self, server):
        async with MProxyClient(server.url, "wrong") as c:
            with pytest.raises(ProxyError) as exc:
                await c.me()
        assert exc.value.status == 401

    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        with pytest.raises(ProxyError):
            await client._request("GET", "/broken", "broken")

    @pytest.mark.asyncio
    async def test_unreachable(self):
        async with MProxyClient("http://127.0.0.1:9", TOKEN, timeout=2) as c:
            with pytest.raises(ProxyError) as exc:
                await c.me()
        assert exc.value.status is None
        assert exc.value.operation == "me"

    @pytest.mark.asyncio
    async def test_disabled_client(self):
        c = MProxyClient("", "")
        assert not c.is_enabled()
        with pytest.raises(ProxyError):
            await c.fetch_members("@g")
        await c.close()
