"""Leaderboard query tests over cumulative power."""

import pytest
import pytest_asyncio

from salesdojo.errors import AccountNotFound
from salesdojo.leaderboard import service


@pytest_asyncio.fixture
async def ranked(make_account):
    """Six accounts: two tied at 500, one with no power."""
    powers = [("ana", 900), ("ben", 500), ("cy", 500), ("dee", 300), ("eli", 100), ("fay", 0)]
    accounts = {}
    for name, power in powers:
        accounts[name] = await make_account(name, display_name=name.title(), power=power)
    return accounts


class TestRank:
    @pytest.mark.asyncio
    async def test_competition_rank(self, db_session, ranked):
        assert await service.rank(db_session, ranked["ana"].id) == 1
        assert await service.rank(db_session, ranked["ben"].id) == 2
        assert await service.rank(db_session, ranked["cy"].id) == 2
        assert await service.rank(db_session, ranked["dee"].id) == 4

    @pytest.mark.asyncio
    async def test_unknown_account(self, db_session, ranked):
        with pytest.raises(AccountNotFound):
            await service.rank(db_session, 9999)


class TestTopN:
    @pytest.mark.asyncio
    async def test_ordering_and_ties(self, db_session, ranked):
        entries = await service.top_n(db_session, limit=10)
        assert [e["display_name"] for e in entries] == ["Ana", "Ben", "Cy", "Dee", "Eli"]
        assert [e["rank"] for e in entries] == [1, 2, 2, 4, 5]

    @pytest.mark.asyncio
    async def test_limit_and_current_user(self, db_session, ranked):
        entries = await service.top_n(db_session, limit=2, current_account_id=ranked["ben"].id)
        assert len(entries) == 2
        assert [e["is_current_user"] for e in entries] == [False, True]

    @pytest.mark.asyncio
    async def test_total_excludes_zero_power(self, db_session, ranked):
        assert await service.total_ranked(db_session) == 5

    @pytest.mark.asyncio
    async def test_display_name_fallback(self, db_session, make_account):
        account = await make_account("anon", power=10)
        entries = await service.top_n(db_session)
        assert entries[0]["display_name"] == f"Rep-{account.id}"


class TestContext:
    @pytest.mark.asyncio
    async def test_two_either_side(self, db_session, ranked):
        entries = await service.context(db_session, ranked["dee"].id)
        assert [e["display_name"] for e in entries] == ["Ben", "Cy", "Dee", "Eli", "Fay"]
        assert [e["is_current_user"] for e in entries] == [False, False, True, False, False]

    @pytest.mark.asyncio
    async def test_top_of_board(self, db_session, ranked):
        entries = await service.context(db_session, ranked["ana"].id)
        assert [e["display_name"] for e in entries] == ["Ana", "Ben", "Cy"]

    @pytest.mark.asyncio
    async def test_custom_radius(self, db_session, ranked):
        entries = await service.context(db_session, ranked["cy"].id, radius=1)
        assert [e["display_name"] for e in entries] == ["Ben", "Cy", "Dee"]
