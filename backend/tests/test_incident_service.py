"""
Tests for incident persistence, rate limiting and resolution
"""
from datetime import datetime, timedelta

import pytest

from conftest import insert_exam_session
from examguard.core.exceptions import (
    IncidentNotFound, IncidentAlreadyResolved, IncidentPersistenceError, IncidentTypeNotReportable,
)
from examguard.proctoring.classifier import (
    ViolationClassifier, ClassifierCounters, FaceSample, ViolationEvent, ViolationKind, Severity,
)
from examguard.proctoring.incident_sink import IncidentSink
from examguard.services.incident_service import IncidentService

T0 = datetime(2026, 10, 19, 9, 0, 0)


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock(T0)


class TestRateLimit:
    async def test_fourth_incident_in_window_is_dropped(self, session_factory, clock):
        session_id = await insert_exam_session(session_factory)
        async with session_factory() as db:
            service = IncidentService(db, clock=clock, rate_limit_count=3, rate_limit_window=60)
            created = []
            for _ in range(4):
                created.append(await service.create_incident(session_id, "tab_switch", "medium", "Switched tabs"))
                clock.advance(5)

            assert all(incident is not None for incident in created[:3])
            assert created[3] is None
            assert len(await service.list_incidents(session_id)) == 3

    async def test_limit_is_per_type(self, session_factory, clock):
        session_id = await insert_exam_session(session_factory)
        async with session_factory() as db:
            service = IncidentService(db, clock=clock, rate_limit_count=3, rate_limit_window=60)
            for _ in range(3):
                await service.create_incident(session_id, "tab_switch", "medium", "Switched tabs")
            assert await service.create_incident(session_id, "window_blur", "medium", "Blurred") is not None

    async def test_window_slides(self, session_factory, clock):
        session_id = await insert_exam_session(session_factory)
        async with session_factory() as db:
            service = IncidentService(db, clock=clock, rate_limit_count=3, rate_limit_window=60)
            for _ in range(3):
                await service.create_incident(session_id, "tab_switch", "medium", "Switched tabs")
            assert await service.create_incident(session_id, "tab_switch", "medium", "Switched tabs") is None

            clock.advance(61)
            assert await service.create_incident(session_id, "tab_switch", "medium", "Switched tabs") is not None

    async def test_multiple_faces_burst_keeps_first_three(self, session_factory, fanout, clock):
        session_id = await insert_exam_session(session_factory)
        sink = IncidentSink(session_factory, fanout, clock=clock)
        classifier = ViolationClassifier()
        counters = ClassifierCounters()

        stored = []
        for i in range(5):
            outcome = classifier.classify_face(
                session_id, FaceSample(face_detected=True, multiple_faces=True, confidence=0.9), counters, now=i
            )
            stored.append(await sink.record(outcome.violation))
            clock.advance(1)

        assert [payload is not None for payload in stored] == [True, True, True, False, False]
        assert all(payload["severity"] == "critical" for payload in stored[:3])
        assert len(fanout.admin_of_type("security_incident")) == 3

        async with session_factory() as db:
            incidents = await IncidentService(db).list_incidents(session_id)
        assert len(incidents) == 3
        assert {i.incident_type for i in incidents} == {"multiple_faces"}


class TestIncidentSink:
    async def test_payload_carries_student_display(self, session_factory, fanout, clock):
        session_id = await insert_exam_session(session_factory, roll_number="R42")
        sink = IncidentSink(session_factory, fanout, clock=clock)

        payload = await sink.record(ViolationEvent(
            session_id=session_id,
            kind=ViolationKind.WINDOW_BLUR,
            severity=Severity.MEDIUM,
            description="Student left the exam window",
            metadata={"violationCount": 1},
        ))

        assert payload["session_id"] == session_id
        assert payload["studentName"] == "Test Student"
        assert payload["rollNumber"] == "R42"
        assert payload["violationType"] == "window_blur"
        assert payload["incident_metadata"] == {"violationCount": 1}
        assert fanout.admin_of_type("security_incident") == [payload]

    async def test_broadcast_failure_keeps_record(self, session_factory, clock):
        class BrokenFanout:
            def broadcast_to_admins(self, message_type, data):
                raise RuntimeError("socket gone")

        session_id = await insert_exam_session(session_factory)
        sink = IncidentSink(session_factory, BrokenFanout(), clock=clock)
        payload = await sink.record(ViolationEvent(
            session_id=session_id, kind=ViolationKind.TAB_SWITCH, severity=Severity.MEDIUM, description="Tab",
        ))

        assert payload is not None
        async with session_factory() as db:
            assert len(await IncidentService(db).list_incidents(session_id)) == 1

    @pytest.mark.parametrize("kind,expected", [
        (ViolationKind.MULTIPLE_FACES, "critical"),
        (ViolationKind.LOOKING_AWAY_REPEATED, "high"),
        (ViolationKind.LOOKING_AWAY, "medium"),
        (ViolationKind.TAB_SWITCH, "medium"),
    ])
    async def test_severity_is_fixed_by_type(self, session_factory, fanout, clock, kind, expected):
        session_id = await insert_exam_session(session_factory)
        sink = IncidentSink(session_factory, fanout, clock=clock)

        payload = await sink.record(ViolationEvent(
            session_id=session_id, kind=kind, severity=Severity.LOW, description="Reported",
        ))

        assert payload["severity"] == expected

    async def test_client_report_refuses_browser_violations(self, session_factory, fanout, clock):
        session_id = await insert_exam_session(session_factory)
        sink = IncidentSink(session_factory, fanout, clock=clock)

        with pytest.raises(IncidentTypeNotReportable):
            await sink.record_client_report(ViolationEvent(
                session_id=session_id, kind=ViolationKind.FULLSCREEN_EXIT, severity=Severity.MEDIUM,
                description="Left fullscreen",
            ))

        async with session_factory() as db:
            assert await IncidentService(db).list_incidents(session_id) == []
        assert fanout.admin_messages == []

    async def test_write_failure_is_not_a_rate_limit(self, fanout, clock):
        def broken_factory():
            raise RuntimeError("database is down")

        sink = IncidentSink(broken_factory, fanout, clock=clock)
        violation = ViolationEvent(
            session_id="any", kind=ViolationKind.LOOKING_AWAY, severity=Severity.MEDIUM, description="Away",
        )

        with pytest.raises(IncidentPersistenceError):
            await sink.store(violation)
        assert await sink.record(violation) is None
        assert fanout.admin_messages == []


class TestResolution:
    async def test_resolve_sets_resolver(self, session_factory, clock):
        session_id = await insert_exam_session(session_factory)
        async with session_factory() as db:
            service = IncidentService(db, clock=clock)
            incident = await service.create_incident(session_id, "tab_switch", "medium", "Switched tabs")
            clock.advance(30)

            resolved = await service.resolve_incident(incident.id, resolved_by="admin-1")
            assert resolved.is_resolved is True
            assert resolved.resolved_by == "admin-1"
            assert resolved.resolved_at == T0 + timedelta(seconds=30)

    async def test_same_admin_is_idempotent(self, session_factory, clock):
        session_id = await insert_exam_session(session_factory)
        async with session_factory() as db:
            service = IncidentService(db, clock=clock)
            incident = await service.create_incident(session_id, "tab_switch", "medium", "Switched tabs")
            first = await service.resolve_incident(incident.id, resolved_by="admin-1")
            resolved_at = first.resolved_at
            clock.advance(60)

            again = await service.resolve_incident(incident.id, resolved_by="admin-1")
            assert again.resolved_at == resolved_at

    async def test_other_admin_cannot_take_over(self, session_factory, clock):
        session_id = await insert_exam_session(session_factory)
        async with session_factory() as db:
            service = IncidentService(db, clock=clock)
            incident = await service.create_incident(session_id, "tab_switch", "medium", "Switched tabs")
            await service.resolve_incident(incident.id, resolved_by="admin-1")

            with pytest.raises(IncidentAlreadyResolved):
                await service.resolve_incident(incident.id, resolved_by="admin-2")

    async def test_unknown_incident(self, session_factory):
        async with session_factory() as db:
            with pytest.raises(IncidentNotFound):
                await IncidentService(db).resolve_incident("missing", resolved_by="admin-1")


class TestStatistics:
    async def test_statistics_by_type_and_severity(self, session_factory, clock):
        session_id = await insert_exam_session(session_factory)
        async with session_factory() as db:
            service = IncidentService(db, clock=clock)
            first = await service.create_incident(session_id, "tab_switch", "medium", "Tab")
            clock.advance(1)
            await service.create_incident(session_id, "multiple_faces", "critical", "Faces")
            clock.advance(1)
            await service.create_incident(session_id, "tab_switch", "medium", "Tab")
            await service.resolve_incident(first.id, resolved_by="admin-1")

            stats = await service.get_statistics(session_id)
            assert await service.count_unresolved() == 2

        assert stats["total_incidents"] == 3
        assert stats["unresolved"] == 2
        assert stats["by_type"] == {"tab_switch": 2, "multiple_faces": 1}
        assert stats["by_severity"] == {"low": 0, "medium": 2, "high": 0, "critical": 1}
        assert [entry["type"] for entry in stats["timeline"]] == ["tab_switch", "multiple_faces", "tab_switch"]

    async def test_unresolved_filter(self, session_factory, clock):
        session_id = await insert_exam_session(session_factory)
        async with session_factory() as db:
            service = IncidentService(db, clock=clock)
            first = await service.create_incident(session_id, "tab_switch", "medium", "Tab")
            clock.advance(1)
            second = await service.create_incident(session_id, "window_blur", "medium", "Blur")
            await service.resolve_incident(first.id, resolved_by="admin-1")

            open_incidents = await service.list_incidents(session_id, unresolved_only=True)
            assert [i.id for i in open_incidents] == [second.id]
