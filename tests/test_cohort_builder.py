from datetime import datetime, timezone

import pytest

from metrics_server.web.app.exceptions import ComputationError
from metrics_server.web.app.models import Profile
from metrics_server.web.app.schemas import UserSignup
from metrics_server.web.app.services.cohort_builder import CohortBuilder, build_cohorts


def signup(year, month, tier):
    return UserSignup(created_at=datetime(year, month, 10, tzinfo=timezone.utc), current_tier=tier)


def test_cohort_counts_paid_users_as_conversions():
    users = [
        signup(2024, 1, "investor"),
        signup(2024, 1, "free"),
        signup(2024, 1, None),
        signup(2024, 1, "elite"),
        signup(2024, 1, "free"),
        signup(2024, 2, "free"),
    ]

    cohorts = build_cohorts(users)

    assert cohorts["2024-01"].signups == 5
    assert cohorts["2024-01"].conversions == 2
    assert cohorts["2024-02"].signups == 1
    assert cohorts["2024-02"].conversions == 0


def test_cohort_keys_are_sorted():
    users = [signup(2024, 3, None), signup(2023, 12, None), signup(2024, 1, None)]

    assert list(build_cohorts(users)) == ["2023-12", "2024-01", "2024-03"]


def test_no_users_gives_no_cohorts():
    assert build_cohorts([]) == {}


@pytest.mark.asyncio
async def test_build_reads_every_profile(session_factory, retry_policy):
    async with session_factory() as session:
        session.add_all([
            Profile(created_at=datetime(2024, 1, 3, tzinfo=timezone.utc), membership_tier="investor"),
            Profile(created_at=datetime(2024, 1, 20, tzinfo=timezone.utc), membership_tier="free"),
            Profile(created_at=datetime(2024, 2, 1, tzinfo=timezone.utc), membership_tier="agent-basic"),
        ])
        await session.commit()

    cohorts = await CohortBuilder(session_factory, retry_policy).build()

    assert {month: (b.signups, b.conversions) for month, b in cohorts.items()} == {
        "2024-01": (2, 1),
        "2024-02": (1, 1),
    }


@pytest.mark.asyncio
async def test_unreadable_population_is_fatal(empty_session_factory, retry_policy):
    with pytest.raises(ComputationError):
        await CohortBuilder(empty_session_factory, retry_policy).build()
