from types import SimpleNamespace

import pytest
from sqlalchemy import select

from twigger_auth.models import LinkedIdentity
from twigger_auth.utils.sql import insert_or_ignore


class TestInsertOrIgnore:
    """Tests for the dialect-aware insert-or-ignore helper."""

    @pytest.mark.asyncio
    async def test_second_insert_is_ignored(self, db_session, test_account):
        """Test that a conflicting insert writes nothing and reports it."""
        values = {
            "account_id": test_account.id,
            "provider": "github.com",
            "provider_subject_id": "gh-42",
        }
        conflict = ["provider", "provider_subject_id"]

        assert await insert_or_ignore(db_session, LinkedIdentity.__table__, values, conflict)
        assert not await insert_or_ignore(db_session, LinkedIdentity.__table__, values, conflict)

        result = await db_session.execute(
            select(LinkedIdentity).where(LinkedIdentity.provider == "github.com")
        )
        assert len(result.scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_unsupported_dialect(self):
        """Test that an unsupported dialect is rejected with ValueError."""
        bind = SimpleNamespace(dialect=SimpleNamespace(name="mysql"))
        db = SimpleNamespace(get_bind=lambda: bind)

        with pytest.raises(ValueError, match="mysql"):
            await insert_or_ignore(
                db, LinkedIdentity.__table__, {}, conflict_columns=["provider"]
            )
