"""Tests for the one-shot group draw."""

import pytest

from drawbot.draw import ensure_client_joined, run_direct_draw
from drawbot.errors import EmptyPoolError, ProxyError
from tests.conftest import FakeMProxy, make_user


@pytest.fixture
def group():
    members = [make_user(i, f"user{i}") for i in range(1, 11)]
    members[0] = make_user(1, "spam_one")
    members[1] = make_user(2, "SPAM_TWO")
    members[2] = make_user(3, "owner")
    members[3] = make_user(4, "helper_bot", is_bot=True)
    return FakeMProxy(members=members, admins=[members[2]], me=make_user(999))


class TestDirectDraw:
    @pytest.mark.asyncio
    async def test_draws_from_eligible_members(self, group, rng):
        eligible = {str(i) for i in range(5, 11)}
        for _ in range(50):
            winners = await run_direct_draw(group, "@g", 3, {"spam_one", "spam_two"}, rng=rng)
            ids = [w.user_id for w in winners]
            assert len(ids) == 3
            assert len(set(ids)) == 3
            assert set(ids) <= eligible

    @pytest.mark.asyncio
    async def test_more_winners_than_pool(self, group, rng):
        winners = await run_direct_draw(group, "@g", 50, {"spam_one", "spam_two"}, rng=rng)
        assert sorted(int(w.user_id) for w in winners) == list(range(5, 11))

    @pytest.mark.asyncio
    async def test_empty_pool(self, rng):
        mproxy = FakeMProxy(members=[make_user(1, is_bot=True)])
        with pytest.raises(EmptyPoolError) as exc:
            await run_direct_draw(mproxy, "@g", 1, rng=rng)
        assert exc.value.channel == "@g"


class TestEnsureClientJoined:
    @pytest.mark.asyncio
    async def test_joins_when_missing(self):
        mproxy = FakeMProxy()
        assert await ensure_client_joined(mproxy, "@g") is True
        assert mproxy.joined == ["@g"]

    @pytest.mark.asyncio
    async def test_skips_when_already_member(self):
        mproxy = FakeMProxy()
        mproxy.member_of.add("@g")
        assert await ensure_client_joined(mproxy, "@g") is False
        assert mproxy.joined == []

    @pytest.mark.asyncio
    async def test_failed_check_still_joins(self):
        mproxy = FakeMProxy()

        async def is_member(target):
            raise ProxyError("timeout", operation="isMember")

        mproxy.is_member = is_member
        assert await ensure_client_joined(mproxy, "@g") is True
        assert mproxy.joined == ["@g"]
