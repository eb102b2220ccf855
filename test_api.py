"""
HTTP surface of the compliance service
"""
from datetime import datetime, timedelta, timezone

PREFIX = "/api/v1/compliance"


def iso(dt: datetime) -> str:
    return dt.isoformat()


def reminder_body(**overrides):
    now = datetime.now(timezone.utc)
    body = {
        "title": "Renew LTO accreditation",
        "remind_at": iso(now - timedelta(minutes=10)),
        "delivery_channel": "email",
        "metadata": {"email": "compliance@example.com"},
    }
    body.update(overrides)
    return body


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_create_reminder_uses_actor_header(client):
    response = client.post(f"{PREFIX}/reminders", json=reminder_body(), headers={"X-Actor-Id": "42"})
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["created_by"] == 42
    assert data["delivery_channels"] == ["email"]
    assert data["metadata"] == {"email": "compliance@example.com"}


def test_escalate_at_not_after_remind_at_is_422(client):
    body = reminder_body()
    body["escalate_at"] = body["remind_at"]
    response = client.post(f"{PREFIX}/reminders", json=body)
    assert response.status_code == 422


def test_due_at_before_remind_at_is_422(client):
    now = datetime.now(timezone.utc)
    response = client.post(
        f"{PREFIX}/reminders",
        json=reminder_body(remind_at=iso(now + timedelta(days=1)), due_at=iso(now)),
    )
    assert response.status_code == 422


def test_unknown_channel_is_422(client):
    response = client.post(f"{PREFIX}/reminders", json=reminder_body(delivery_channel="fax"))
    assert response.status_code == 422


def test_process_then_cancel_sent_is_409(client):
    reminder_id = client.post(f"{PREFIX}/reminders", json=reminder_body()).json()["id"]

    dry = client.post(f"{PREFIX}/reminders/process", params={"dry_run": True}).json()
    assert dry == {"processed": 1, "events_created": 0, "sent": 0, "failed": 0,
                   "escalated": 0, "skipped": 0, "dry_run": True}

    result = client.post(f"{PREFIX}/reminders/process").json()
    assert result["sent"] == 1

    reminder = client.get(f"{PREFIX}/reminders/{reminder_id}").json()
    assert reminder["status"] == "sent"
    assert reminder["sent_count"] == 1

    response = client.post(f"{PREFIX}/reminders/{reminder_id}/cancel")
    assert response.status_code == 409
    assert response.json()["detail"]["current"] == "sent"

    events = client.get(f"{PREFIX}/reminders/{reminder_id}/events").json()
    assert [e["event_type"] for e in events] == ["sent", "triggered"]


def test_cancel_and_retry(client):
    reminder_id = client.post(f"{PREFIX}/reminders", json=reminder_body(delivery_channel="push")).json()["id"]
    client.post(f"{PREFIX}/reminders/process")
    assert client.get(f"{PREFIX}/reminders/{reminder_id}").json()["status"] == "failed"

    retried = client.post(f"{PREFIX}/reminders/{reminder_id}/retry", headers={"X-Actor-Id": "3"})
    assert retried.status_code == 200
    assert retried.json()["status"] == "pending"
    assert retried.json()["updated_by"] == 3

    cancelled = client.post(f"{PREFIX}/reminders/{reminder_id}/cancel", params={"reason": "Handled by phone"})
    assert cancelled.json()["status"] == "cancelled"

    assert client.post(f"{PREFIX}/reminders/{reminder_id}/retry").status_code == 409


def test_missing_reminder_is_404(client):
    assert client.get(f"{PREFIX}/reminders/999").status_code == 404
    assert client.post(f"{PREFIX}/reminders/999/cancel").status_code == 404
    assert client.get(f"{PREFIX}/reminders/999/events").status_code == 404
    assert client.patch(f"{PREFIX}/reminders/999", json={"title": "x"}).status_code == 404


def test_patch_reminder_validates_merged_schedule(client):
    now = datetime.now(timezone.utc)
    reminder_id = client.post(
        f"{PREFIX}/reminders", json=reminder_body(remind_at=iso(now + timedelta(days=2)))
    ).json()["id"]

    response = client.patch(f"{PREFIX}/reminders/{reminder_id}", json={"escalate_at": iso(now + timedelta(days=1))})
    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "escalate_at"

    response = client.patch(f"{PREFIX}/reminders/{reminder_id}", json={"priority": "critical"})
    assert response.status_code == 200
    assert response.json()["priority"] == "critical"


def test_list_and_stats(client):
    client.post(f"{PREFIX}/reminders", json=reminder_body())
    client.post(f"{PREFIX}/reminders", json=reminder_body(priority="high"))

    assert len(client.get(f"{PREFIX}/reminders").json()) == 2
    assert len(client.get(f"{PREFIX}/reminders", params={"priority": "high"}).json()) == 1

    stats = client.get(f"{PREFIX}/reminders/stats").json()
    assert stats["total"] == 2
    assert stats["overdue"] == 2


def test_checklist_endpoints(client):
    response = client.post(
        f"{PREFIX}/checklists",
        json={
            "title": "Quarterly emission test log",
            "code": "EMI-Q",
            "frequency_type": "quarterly",
            "start_date": "2020-01-31",
            "due_time": "08:30",
        },
        headers={"X-Actor-Id": "7"},
    )
    assert response.status_code == 201
    checklist = response.json()
    assert checklist["created_by"] == 7
    assert checklist["next_due_at"] is not None

    schedule = client.get(f"{PREFIX}/checklists/{checklist['id']}/schedule", params={"count": 3}).json()
    assert len(schedule["occurrences"]) == 3

    duplicate = client.post(
        f"{PREFIX}/checklists",
        json={"title": "Dup", "code": "EMI-Q", "frequency_type": "daily", "start_date": "2024-01-01"},
    )
    assert duplicate.status_code == 422

    patched = client.patch(f"{PREFIX}/checklists/{checklist['id']}", json={"status": "inactive"})
    assert patched.json()["status"] == "inactive"

    completed = client.post(f"{PREFIX}/checklists/{checklist['id']}/complete")
    assert completed.json()["last_completed_at"] is not None

    assert client.get(f"{PREFIX}/checklists/999").status_code == 404
    assert len(client.get(f"{PREFIX}/checklists", params={"status": "inactive"}).json()) == 1


def test_custom_checklist_without_unit_is_422(client):
    response = client.post(
        f"{PREFIX}/checklists",
        json={"title": "Odd", "frequency_type": "custom", "custom_frequency_value": 2, "start_date": "2024-01-01"},
    )
    assert response.status_code == 422


def test_patch_with_null_for_required_field_is_422(client):
    checklist = client.post(
        f"{PREFIX}/checklists",
        json={"title": "Signage audit", "frequency_type": "monthly", "start_date": "2024-01-15"},
    ).json()
    response = client.patch(f"{PREFIX}/checklists/{checklist['id']}", json={"title": None})
    assert response.status_code == 422
    assert client.get(f"{PREFIX}/checklists/{checklist['id']}").json()["title"] == "Signage audit"

    cleared = client.patch(f"{PREFIX}/checklists/{checklist['id']}", json={"description": None})
    assert cleared.status_code == 200

    reminder = client.post(f"{PREFIX}/reminders", json=reminder_body(auto_escalate=True)).json()
    for body in ({"auto_escalate": None}, {"delivery_channels": None}, {"remind_at": None}):
        response = client.patch(f"{PREFIX}/reminders/{reminder['id']}", json=body)
        assert response.status_code == 422
    assert client.get(f"{PREFIX}/reminders/{reminder['id']}").json()["auto_escalate"] is True
