from datetime import datetime, timedelta

from conftest import insert_exam_session, load_exam_session
from examguard.models.exam_session import ExamSession
from examguard.tasks.maintenance import is_overdue, expire_overdue
from examguard.utils.timezone import utc_now


def test_is_overdue_uses_last_update_and_budget():
    last_update = datetime(2026, 10, 19, 9, 0, 0)
    row = ExamSession(status="in_progress", time_remaining=600, updated_at=last_update)

    assert not is_overdue(row, last_update + timedelta(seconds=800), grace_seconds=300)
    assert is_overdue(row, last_update + timedelta(seconds=901), grace_seconds=300)


def test_row_without_timestamps_is_never_overdue():
    row = ExamSession(status="in_progress", time_remaining=0)
    assert not is_overdue(row, utc_now(), grace_seconds=0)


async def test_expire_overdue_only_touches_stale_in_progress(session_factory):
    stale = await insert_exam_session(session_factory, time_remaining=60)
    paused = await insert_exam_session(session_factory, time_remaining=60, status="paused")
    fresh = await insert_exam_session(session_factory, time_remaining=10 * 24 * 3600)

    now = utc_now() + timedelta(hours=1)
    report = await expire_overdue(session_factory, now=now, grace_seconds=300)

    assert report["expired_sessions"] == [stale]
    assert report["total_expired"] == 1

    stale_row = await load_exam_session(session_factory, stale)
    assert stale_row.status == "submitted"
    assert stale_row.submit_reason == "time_expired"
    assert stale_row.time_remaining == 0
    assert stale_row.end_time == now

    assert (await load_exam_session(session_factory, paused)).status == "paused"
    assert (await load_exam_session(session_factory, fresh)).status == "in_progress"


async def test_expire_overdue_is_repeatable(session_factory):
    await insert_exam_session(session_factory, time_remaining=60)
    now = utc_now() + timedelta(hours=1)

    first = await expire_overdue(session_factory, now=now, grace_seconds=0)
    second = await expire_overdue(session_factory, now=now, grace_seconds=0)

    assert first["total_expired"] == 1
    assert second["total_expired"] == 0
