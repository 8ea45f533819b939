"""
Messages inbox tests.

Covers:
    1. CRUD on /api/messages scoped to the caller
    2. Validation of client supplied messages
    3. Dispatch helpers (single, bulk, empty recipient)
"""

import pytest

from koassets.models.notification import Message
from koassets.services.notification import (
    DISPATCH_SENDER,
    NotificationService,
    send_message,
    send_message_to_multiple,
)

OWNER = "owner@coca-cola.com"
INTRUDER = "intruder@coca-cola.com"


@pytest.fixture()
def headers(auth_headers):
    return auth_headers(OWNER)


def _create(client, headers, **fields):
    payload = {"id": "m-1", "subject": "Hello", "message": "Body"}
    payload.update(fields)
    return client.post("/api/messages", json=payload, headers=headers)


# ═══════════════════════════════════════════════════════════════════════════
#  Endpoints
# ═══════════════════════════════════════════════════════════════════════════

class TestMessagesApi:
    def test_create_applies_defaults(self, client, headers):
        res = _create(client, headers)
        assert res.status_code == 200
        msg = res.get_json()["message"]
        assert msg["owner"] == OWNER
        assert msg["type"] == "Notification"
        assert msg["from"] == "system@coca-cola.com"
        assert msg["priority"] == "normal"
        assert msg["expiresInXDays"] == 30
        assert msg["status"] == "unread"

    def test_create_requires_id_subject_message(self, client, headers):
        res = client.post("/api/messages", json={"id": "m-1"}, headers=headers)
        assert res.status_code == 400
        body = res.get_json()
        assert body["error"] == "Missing required fields: id, subject, message"
        assert body["details"] == {"subject": "required", "message": "required"}

    def test_create_rejects_unknown_priority(self, client, headers):
        res = _create(client, headers, priority="urgent")
        assert res.status_code == 400

    @pytest.mark.parametrize("days", ["soon", 1.5, -1, True, [7]])
    def test_create_rejects_bad_expiry(self, client, headers, days):
        res = _create(client, headers, expiresInXDays=days)
        assert res.status_code == 400
        assert res.get_json()["details"] == {"expiresInXDays": "must be a non-negative integer"}
        assert Message.query.filter_by(owner=OWNER).count() == 0

    def test_expiry_accepts_numeric_strings(self, client, headers):
        res = _create(client, headers, expiresInXDays="7")
        assert res.get_json()["message"]["expiresInXDays"] == 7

    def test_update_rejects_bad_expiry(self, client, headers):
        _create(client, headers)
        res = client.post("/api/messages/m-1", json={"expiresInXDays": "never"}, headers=headers)
        assert res.status_code == 400
        assert Message.query.filter_by(owner=OWNER).one().expires_in_days == 30

        res = client.post("/api/messages/m-1", json={"expiresInXDays": 3.0}, headers=headers)
        assert res.get_json()["message"]["expiresInXDays"] == 3

    def test_create_with_existing_id_overwrites(self, client, headers):
        _create(client, headers)
        _create(client, headers, subject="Second")
        assert Message.query.filter_by(owner=OWNER).count() == 1
        assert Message.query.filter_by(owner=OWNER).one().subject == "Second"

    def test_list_counts_unread(self, client, headers):
        _create(client, headers, id="m-1")
        _create(client, headers, id="m-2", status="read")
        body = client.get("/api/messages", headers=headers).get_json()
        assert body["count"] == 2
        assert body["unreadCount"] == 1
        assert {m["id"] for m in body["messages"]} == {"m-1", "m-2"}

    def test_mark_as_read(self, client, headers):
        _create(client, headers)
        res = client.post("/api/messages/m-1", json={"status": "read", "owner": "x@y.z"}, headers=headers)
        assert res.status_code == 200
        msg = res.get_json()["message"]
        assert msg["status"] == "read"
        assert msg["owner"] == OWNER

    def test_get_and_delete(self, client, headers):
        _create(client, headers)
        assert client.get("/api/messages/m-1", headers=headers).get_json()["message"]["subject"] == "Hello"

        res = client.delete("/api/messages/m-1", headers=headers)
        assert res.get_json() == {"success": True, "message": "Notification deleted successfully"}
        assert client.get("/api/messages/m-1", headers=headers).status_code == 404

    def test_other_users_message_is_404(self, client, headers, auth_headers):
        _create(client, headers)
        intruder = auth_headers(INTRUDER)
        assert client.get("/api/messages/m-1", headers=intruder).status_code == 404
        assert client.post("/api/messages/m-1", json={"status": "read"}, headers=intruder).status_code == 404
        assert client.delete("/api/messages/m-1", headers=intruder).status_code == 404
        assert client.get("/api/messages", headers=intruder).get_json()["count"] == 0

    def test_requires_session(self, client):
        assert client.get("/api/messages").status_code == 401


# ═══════════════════════════════════════════════════════════════════════════
#  Dispatch
# ═══════════════════════════════════════════════════════════════════════════

class TestDispatch:
    def test_send_message_stores_unread(self):
        assert send_message("Reviewer@Coca-Cola.com", subject="S", message="M", request_id="17", event_type="x") is True
        msg = Message.query.filter_by(owner="reviewer@coca-cola.com").one()
        assert msg.from_ == DISPATCH_SENDER
        assert msg.status == "unread"
        assert msg.expires_in_days == 7
        assert msg.request_id == "17"

    def test_blank_recipient_is_skipped(self):
        assert send_message("  ", subject="S", message="M") is False
        assert Message.query.count() == 0

    def test_bulk_summary(self):
        summary = send_message_to_multiple(["a@coca-cola.com", "", "b@coca-cola.com"], subject="S", message="M")
        assert summary == {"total": 3, "success": 2, "failed": 1}

    def test_unread_count(self):
        send_message(OWNER, subject="S", message="M")
        assert NotificationService.unread_count(OWNER) == 1
