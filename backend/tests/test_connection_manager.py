"""
Tests for the realtime fan-out
"""
import asyncio

import pytest

from examguard.realtime.manager import ConnectionManager


class FakeWebSocket:
    def __init__(self, delay: float = 0.0, fail: bool = False):
        self.delay = delay
        self.fail = fail
        self.sent = []

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("connection reset")
        if self.delay:
            await asyncio.sleep(self.delay)
        self.sent.append(message)


@pytest.fixture
async def manager():
    manager = ConnectionManager(queue_size=2)
    yield manager
    await manager.close_all()


class TestBroadcast:
    async def test_late_admin_gets_no_replay(self, manager):
        assert manager.broadcast_to_admins("security_incident", {"n": 1}) == 0

        ws = FakeWebSocket()
        connection = manager.register(ws, "admin-1", "admin")
        assert manager.broadcast_to_admins("security_incident", {"n": 2}) == 1
        await connection.drain()

        assert ws.sent == [{"type": "security_incident", "data": {"n": 2}}]

    async def test_students_do_not_get_admin_messages(self, manager):
        admin_ws, student_ws = FakeWebSocket(), FakeWebSocket()
        admin = manager.register(admin_ws, "admin-1", "admin")
        student = manager.register(student_ws, "student_R1", "student", "s1")

        manager.broadcast_to_admins("policy_update", {"action": "paused"})
        await admin.drain()
        await student.drain()

        assert len(admin_ws.sent) == 1
        assert student_ws.sent == []

    async def test_slow_admin_does_not_hold_up_fast_admin(self, manager):
        fast_ws, slow_ws = FakeWebSocket(), FakeWebSocket(delay=0.2)
        fast = manager.register(fast_ws, "admin-fast", "admin")
        slow = manager.register(slow_ws, "admin-slow", "admin")

        for n in range(10):
            manager.broadcast_to_admins("student_status", {"n": n})
            await asyncio.sleep(0.01)
        await fast.drain()

        assert [m["data"]["n"] for m in fast_ws.sent] == list(range(10))
        assert fast.dropped == 0
        assert slow.dropped > 0

        await slow.drain()
        assert len(slow_ws.sent) + slow.dropped == 10
        received = [m["data"]["n"] for m in slow_ws.sent]
        assert received == sorted(received)

    async def test_failed_send_closes_connection(self, manager):
        ws = FakeWebSocket(fail=True)
        connection = manager.register(ws, "admin-1", "admin")

        manager.broadcast_to_admins("security_incident", {"n": 1})
        await connection.drain()

        assert connection.closed
        assert manager.broadcast_to_admins("security_incident", {"n": 2}) == 0


class TestSessionMessages:
    async def test_send_to_session_targets_the_student(self, manager):
        own_ws, other_ws, admin_ws = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
        own = manager.register(own_ws, "student_R1", "student", "s1")
        other = manager.register(other_ws, "student_R2", "student", "s2")
        admin = manager.register(admin_ws, "admin-1", "admin", "s1")

        assert manager.send_to_session("s1", "warning", {"message": "Look at the camera"}) == 1
        for connection in (own, other, admin):
            await connection.drain()

        assert own_ws.sent == [{"type": "warning", "data": {"message": "Look at the camera"}}]
        assert other_ws.sent == []
        assert admin_ws.sent == []

    async def test_unregister(self, manager):
        connection = manager.register(FakeWebSocket(), "student_R1", "student", "s1")
        await manager.unregister(connection)

        assert manager.connections() == []
        assert manager.send_to_session("s1", "warning", {}) == 0
        assert connection.offer({"type": "warning"}) is False
