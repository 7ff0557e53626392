import json
from datetime import timedelta

import pytest

from kairos.domain.analytics.models import ReviewFilter, SessionFilter
from kairos.domain.errors import RangeTooLargeError, StoreUnavailable
from kairos.infrastructure.adapters.memory import InMemoryEventRepository


@pytest.fixture
def reviews(make_review):
    return [
        make_review(f"c{i}", i % 2 == 0, timedelta(minutes=i), user_id="u1" if i < 6 else "u2")
        for i in range(10)
    ]


@pytest.mark.asyncio
async def test_query_reviews_filters_and_sorts(make_repo, reviews, now):
    repo = make_repo(reviews)

    result = await repo.query_reviews(ReviewFilter(user_id="u1", until=now))

    assert len(result) == 6
    assert [r.reviewed_at for r in result] == sorted(r.reviewed_at for r in result)


@pytest.mark.asyncio
async def test_query_reviews_time_bounds_are_inclusive(make_repo, reviews, now):
    repo = make_repo(reviews)
    since = now - timedelta(minutes=3)
    until = now - timedelta(minutes=1)

    result = await repo.query_reviews(ReviewFilter(since=since, until=until))

    assert {r.card_id for r in result} == {"c1", "c2", "c3"}


@pytest.mark.asyncio
async def test_row_cap_raises_instead_of_truncating(make_repo, reviews):
    repo = make_repo(reviews, max_rows=5)

    with pytest.raises(RangeTooLargeError):
        await repo.query_reviews(ReviewFilter())


@pytest.mark.asyncio
async def test_explicit_pages_under_cap(make_repo, reviews):
    repo = make_repo(reviews, max_rows=5)

    first = await repo.query_reviews(ReviewFilter(limit=4))
    second = await repo.query_reviews(ReviewFilter(limit=4, offset=4))
    third = await repo.query_reviews(ReviewFilter(limit=4, offset=8))

    assert [len(first), len(second), len(third)] == [4, 4, 2]
    assert len({r.card_id for r in first + second + third}) == 10

    with pytest.raises(RangeTooLargeError):
        await repo.query_reviews(ReviewFilter(limit=6))


@pytest.mark.asyncio
async def test_query_sessions(make_repo, make_session, now):
    repo = make_repo(
        sessions=[
            make_session("s1", started_at=now - timedelta(hours=3)),
            make_session("s2", started_at=now + timedelta(hours=1)),
            make_session("s3", user_id="u2"),
        ]
    )

    result = await repo.query_sessions(SessionFilter(user_id="u1", started_before=now))
    assert [s.session_id for s in result] == ["s1"]


@pytest.mark.asyncio
async def test_prerequisite_graph(make_repo):
    repo = make_repo(prerequisites=[("b", "a", "d1"), ("c", "a", "d2"), ("c", "b", "d2")])

    graph = await repo.query_prerequisite_graph()
    assert graph.available is True
    assert graph.prerequisites_of("c") == frozenset({"a", "b"})

    deck_graph = await repo.query_prerequisite_graph("d1")
    assert deck_graph.prerequisites_of("c") == frozenset()

    assert (await make_repo().query_prerequisite_graph()).available is False


@pytest.mark.asyncio
async def test_from_file(tmp_path):
    fixture = tmp_path / "events.json"
    fixture.write_text(
        json.dumps(
            {
                "reviews": [
                    {
                        "user_id": "u1",
                        "card_id": "c1",
                        "deck_id": "d1",
                        "session_id": "s1",
                        "reviewed_at": "2026-03-18T10:00:00Z",
                        "response_quality": 4,
                        "response_time_ms": 1500,
                        "interval_before": 1,
                        "interval_after": 3,
                        "ease_factor": 2.5,
                        "was_correct": True,
                    }
                ],
                "sessions": [
                    {
                        "session_id": "s1",
                        "user_id": "u1",
                        "started_at": "2026-03-18T09:55:00+00:00",
                        "utc_offset_minutes": -300,
                    }
                ],
            }
        )
    )

    repo = InMemoryEventRepository.from_file(fixture)

    (review,) = await repo.query_reviews(ReviewFilter())
    assert review.reviewed_at.tzinfo is not None
    assert review.reviewed_at.hour == 10
    (session,) = await repo.query_sessions(SessionFilter())
    assert session.is_live
    assert session.utc_offset_minutes == -300
    assert session.device_category == "unknown"


def test_from_missing_file_is_store_unavailable(tmp_path):
    with pytest.raises(StoreUnavailable):
        InMemoryEventRepository.from_file(tmp_path / "missing.yaml")
