"""
Tests for the WebSocket protocol
"""

WS = "/api/v1/ws"


def auth_admin(ws, user_id="admin-1"):
    ws.send_json({"type": "auth", "userId": user_id, "userType": "admin"})
    reply = ws.receive_json()
    assert reply["type"] == "auth_ok"
    return reply


def auth_student(ws, session_id):
    ws.send_json({"type": "auth", "userId": "student_R1", "userType": "student", "sessionId": session_id})
    reply = ws.receive_json()
    assert reply["type"] == "auth_ok"
    return reply


class TestHandshake:
    def test_auth_ok(self, client):
        with client.websocket_connect(WS) as ws:
            reply = auth_admin(ws)
            assert reply["data"] == {"userId": "admin-1", "userType": "admin", "sessionId": None}

    def test_first_message_must_be_auth(self, client):
        with client.websocket_connect(WS) as ws:
            ws.send_json({"type": "ping"})
            reply = ws.receive_json()
            assert reply["type"] == "error"
            assert reply["data"]["error"] == "AUTH_REQUIRED"

            auth_admin(ws)

    def test_invalid_auth(self, client):
        with client.websocket_connect(WS) as ws:
            ws.send_json({"type": "auth", "userId": "x", "userType": "proctor"})
            assert ws.receive_json()["data"]["error"] == "INVALID_AUTH"

    def test_malformed_message(self, client):
        with client.websocket_connect(WS) as ws:
            ws.send_text("not json")
            assert ws.receive_json()["data"]["error"] == "INVALID_MESSAGE"

    def test_ping_and_unknown_type(self, client):
        with client.websocket_connect(WS) as ws:
            auth_admin(ws)
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"
            ws.send_json({"type": "teleport"})
            assert ws.receive_json()["data"]["error"] == "UNSUPPORTED_MESSAGE"


class TestStudentEvents:
    def test_escape_pauses_and_notifies_admin(self, client, started_session):
        session_id = started_session["id"]
        with client.websocket_connect(WS) as admin, client.websocket_connect(WS) as student:
            auth_admin(admin)
            auth_student(student, session_id)

            student.send_json({"type": "browser_event", "data": {"eventType": "keydown", "key": "Escape"}})

            student_messages = [student.receive_json() for _ in range(3)]
            by_type = {m["type"]: m["data"] for m in student_messages}
            assert set(by_type) == {"session_state", "warning", "block_default"}
            assert by_type["session_state"]["status"] == "paused"
            assert by_type["block_default"]["key"] == "Escape"

            incident = admin.receive_json()
            assert incident["type"] == "security_incident"
            assert incident["data"]["violationType"] == "key_violation"
            assert incident["data"]["studentName"] == "Asha Verma"

            policy = admin.receive_json()
            assert policy["type"] == "policy_update"
            assert policy["data"]["action"] == "paused"
            assert policy["data"]["sessionId"] == session_id

    def test_manual_submit_sends_no_policy_update(self, client, started_session):
        with client.websocket_connect(WS) as admin:
            auth_admin(admin)
            client.post(f"/api/v1/exam-sessions/{started_session['id']}/submit", json={"reason": "violations"})

            admin.send_json({"type": "ping"})
            assert admin.receive_json()["type"] == "pong"

    def test_look_away_warning_reaches_student(self, client, started_session):
        with client.websocket_connect(WS) as student:
            auth_student(student, started_session["id"])
            student.send_json({"type": "face_sample", "data": {"faceDetected": True, "lookingAway": True}})

            warning = student.receive_json()
            assert warning["type"] == "warning"
            assert warning["data"]["lookAwayCount"] == 1

    def test_admin_cannot_send_student_events(self, client, started_session):
        with client.websocket_connect(WS) as admin:
            auth_admin(admin)
            admin.send_json({"type": "face_sample", "sessionId": started_session["id"],
                             "data": {"faceDetected": True}})
            assert admin.receive_json()["data"]["error"] == "FORBIDDEN"

    def test_student_without_session(self, client):
        with client.websocket_connect(WS) as student:
            student.send_json({"type": "auth", "userId": "student_R1", "userType": "student"})
            student.receive_json()
            student.send_json({"type": "face_sample", "data": {"faceDetected": True}})
            assert student.receive_json()["data"]["error"] == "SESSION_REQUIRED"


class TestRelays:
    def test_client_violation_is_stored_and_broadcast(self, client, started_session, admin_headers):
        session_id = started_session["id"]
        with client.websocket_connect(WS) as admin, client.websocket_connect(WS) as student:
            auth_admin(admin)
            auth_student(student, session_id)

            student.send_json({"type": "face_violation", "data": {
                "sessionId": session_id,
                "incidentType": "multiple_faces",
                "severity": "critical",
                "description": "Two faces in frame",
                "studentName": "Asha Verma",
                "rollNumber": "R1",
            }})

            incident = admin.receive_json()
            assert incident["type"] == "security_incident"
            assert incident["data"]["severity"] == "critical"
            assert incident["data"]["rollNumber"] == "R1"

        stored = client.get("/api/v1/security-incidents", params={"session_id": session_id},
                            headers=admin_headers).json()
        assert "multiple_faces" in [i["incident_type"] for i in stored]

    def test_violation_for_unknown_session(self, client):
        with client.websocket_connect(WS) as student:
            auth_student(student, "missing")
            student.send_json({"type": "security_violation", "data": {
                "sessionId": "missing",
                "incidentType": "looking_away",
                "severity": "medium",
                "description": "Looked away from the screen",
            }})
            assert student.receive_json()["data"]["error"] == "SESSION_NOT_FOUND"

    def test_student_cannot_report_for_another_session(self, client, started_session, seed_exam, admin_headers):
        other = client.post("/api/v1/exam-sessions", json={"hall_ticket_id": seed_exam()}).json()
        with client.websocket_connect(WS) as student:
            auth_student(student, started_session["id"])
            student.send_json({"type": "face_violation", "data": {
                "sessionId": other["id"],
                "incidentType": "multiple_faces",
                "severity": "critical",
                "description": "Two faces in frame",
            }})
            assert student.receive_json()["data"]["error"] == "FORBIDDEN"

        stored = client.get("/api/v1/security-incidents", params={"session_id": other["id"]},
                            headers=admin_headers).json()
        assert stored == []

    def test_browser_violations_cannot_be_reported(self, client, started_session):
        with client.websocket_connect(WS) as student:
            auth_student(student, started_session["id"])
            student.send_json({"type": "security_violation", "data": {
                "sessionId": started_session["id"],
                "incidentType": "tab_switch",
                "severity": "medium",
                "description": "Switched tabs",
            }})
            assert student.receive_json()["data"]["error"] == "INCIDENT_TYPE_NOT_REPORTABLE"

    def test_reported_severity_is_overridden(self, client, started_session):
        session_id = started_session["id"]
        with client.websocket_connect(WS) as admin, client.websocket_connect(WS) as student:
            auth_admin(admin)
            auth_student(student, session_id)

            student.send_json({"type": "face_violation", "data": {
                "sessionId": session_id,
                "incidentType": "multiple_faces",
                "severity": "low",
                "description": "Two faces in frame",
            }})

            incident = admin.receive_json()
            assert incident["type"] == "security_incident"
            assert incident["data"]["severity"] == "critical"

    def test_admin_cannot_report_violations(self, client, started_session):
        with client.websocket_connect(WS) as admin:
            auth_admin(admin)
            admin.send_json({"type": "security_violation", "data": {
                "sessionId": started_session["id"],
                "incidentType": "tab_switch",
                "severity": "medium",
                "description": "Switched tabs",
            }})
            assert admin.receive_json()["data"]["error"] == "FORBIDDEN"

    def test_status_update_is_relayed(self, client, started_session):
        with client.websocket_connect(WS) as admin, client.websocket_connect(WS) as student:
            auth_admin(admin)
            auth_student(student, started_session["id"])

            student.send_json({"type": "student_status_update", "payload": {"online": True}})

            relayed = admin.receive_json()
            assert relayed == {"type": "student_status", "data": {"online": True}}

    def test_video_snapshot_is_relayed(self, client, started_session):
        with client.websocket_connect(WS) as admin, client.websocket_connect(WS) as student:
            auth_admin(admin)
            auth_student(student, started_session["id"])

            student.send_json({"type": "video_snapshot", "data": {
                "sessionId": started_session["id"],
                "studentId": "student_R1",
                "snapshot": "data:image/jpeg;base64,AAAA",
            }})

            feed = admin.receive_json()
            assert feed["type"] == "video_feed"
            assert feed["data"]["sessionId"] == started_session["id"]
            assert feed["data"]["snapshot"].startswith("data:image/jpeg")
