from salonqueue.core import rate_limiter
from salonqueue.core.config import settings
from salonqueue.core.rate_limiter import reset_rate_limits
from salonqueue.services import appointment_state
from salonqueue.services.notification_policy import Outbox

from conftest import NOW, ist


def _public_join(client, salon, name, **extra):
    payload = {"queue_id": salon.queue.id, "customer_name": name, "phone": "9876543210"}
    payload.update(extra)
    return client.post("/api/public/queue/join", json=payload)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_public_join_and_track(client, salon):
    first = _public_join(client, salon, "First")
    assert first.status_code == 201
    assert first.json()["entry"]["ticket_number"] == "Q-1"
    assert first.json()["estimated_wait_minutes"] == 0

    second = _public_join(client, salon, "Second")
    token = second.json()["status_token"]
    assert second.json()["estimated_wait_minutes"] == 30

    status = client.get("/api/public/queue/status", params={"token": token})

    assert status.status_code == 200
    body = status.json()
    assert body["status"] == "waiting"
    assert body["position"] == 2
    assert body["position_ahead"] == 1
    assert body["estimated_wait_minutes"] == 30
    assert body["current_serving_ticket"] is None


def test_signed_in_guest_is_linked_to_the_entry(client, salon, staff_headers):
    response = client.post(
        "/api/public/queue/join",
        json={"queue_id": salon.queue.id},
        headers=staff_headers,
    )

    assert response.status_code == 201
    assert response.json()["entry"]["customer_name"] == "Guest"


def test_unknown_status_token(client, salon):
    response = client.get("/api/public/queue/status", params={"token": "does-not-exist"})
    assert response.status_code == 404


def test_staff_endpoints_need_a_token(client, salon):
    assert client.get(f"/api/queues/{salon.queue.id}/today").status_code == 401
    assert client.patch("/api/queues/entries/1/status", json={"status": "serving"}).status_code == 401


def test_staff_dashboard_lists_todays_queue(client, salon, staff_headers):
    _public_join(client, salon, "First")
    _public_join(client, salon, "Second")

    response = client.get(f"/api/queues/{salon.queue.id}/today", headers=staff_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert body["entry_date"] == "2026-03-10"
    assert [e["position"] for e in body["entries"]] == [1, 2]


def test_unknown_entry_is_404(client, salon, staff_headers):
    response = client.patch("/api/queues/entries/9999/status", json={"status": "serving"}, headers=staff_headers)

    assert response.status_code == 404
    assert response.json()["detail"]["kind"] == "not_found"


def test_serving_without_experts_is_a_retryable_conflict(client, salon, staff_headers):
    entry_id = _public_join(client, salon, "First").json()["entry"]["id"]

    response = client.patch(
        f"/api/queues/entries/{entry_id}/status",
        json={"status": "serving"},
        headers=staff_headers,
    )

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["reason"] == "no_eligible_provider"
    assert detail["retryable"] is True


def test_full_visit_through_the_api(client, salon, make_provider, staff_headers):
    provider = make_provider()
    entry = _public_join(client, salon, "First").json()["entry"]
    task_id = entry["tasks"][0]["id"]

    serving = client.patch(
        f"/api/queues/entries/{entry['id']}/status",
        json={"status": "serving"},
        headers=staff_headers,
    )
    assert serving.status_code == 200
    assert serving.json()["assigned_provider_id"] == provider.id

    started = client.post(f"/api/queues/tasks/{task_id}/start", headers=staff_headers)
    assert started.json()["task_status"] == "in_progress"

    done = client.post(f"/api/queues/tasks/{task_id}/complete", headers=staff_headers)
    assert done.json()["task_status"] == "done"

    today = client.get(f"/api/queues/{salon.queue.id}/today", headers=staff_headers).json()
    assert today["total"] == 0


def test_skip_and_reset(client, salon, staff_headers):
    first = _public_join(client, salon, "First").json()["entry"]
    _public_join(client, salon, "Second")

    skipped = client.post(f"/api/queues/entries/{first['id']}/skip", headers=staff_headers)
    assert skipped.json()["status"] == "skipped"
    assert skipped.json()["position"] == 2

    reset = client.post(f"/api/queues/{salon.queue.id}/reset", headers=staff_headers)
    assert reset.json()["deleted"] == 2


def test_display_board_merges_tickets_and_bookings(client, db, salon):
    _public_join(client, salon, "Walk-in")
    appointment = appointment_state.book_appointment(
        db, salon.business.id, [salon.haircut.id], ist(11, 30), Outbox(),
        guest_name="Priya", now=NOW,
    )
    appointment_state.transition_appointment(db, appointment.id, "confirmed", Outbox(), now=NOW)
    db.commit()

    response = client.get("/api/public/business/test-salon/display")

    assert response.status_code == 200
    items = response.json()["entries"]
    assert [item["type"] for item in items] == ["queue", "appointment"]
    assert items[0]["display_token"] == "Q-1"
    assert items[1]["display_token"] == "BOOKED"
    assert items[1]["service_name"] == "Haircut"


def test_booking_requires_an_offset(client, salon):
    response = client.post("/api/public/appointment/book", json={
        "business_id": salon.business.id,
        "service_ids": [salon.haircut.id],
        "start_time": "2026-03-10T15:00:00",
        "guest_name": "Priya",
    })
    assert response.status_code == 422


def test_public_booking(client, salon):
    response = client.post("/api/public/appointment/book", json={
        "business_id": salon.business.id,
        "service_ids": [salon.haircut.id],
        "start_time": "2026-03-10T15:00:00+05:30",
        "guest_name": "Priya",
    })

    assert response.status_code == 201
    assert response.json()["appointment"]["status"] == "scheduled"


def test_public_endpoints_are_rate_limited(client, salon, monkeypatch):
    monkeypatch.setattr(settings, "rate_limit_requests", 2)

    codes = [client.get("/api/public/queue/status", params={"token": "unknown-token"}).status_code for _ in range(3)]

    assert codes == [404, 404, 429]


def test_expired_rate_windows_are_swept():
    reset_rate_limits()
    rate_limiter._rate_windows["10.0.0.1"] = (5, 1000.0)
    rate_limiter._rate_windows["10.0.0.2"] = (1, 1000.0 + settings.rate_limit_window)

    removed = rate_limiter.cleanup_expired_windows(now=1000.0 + settings.rate_limit_window + 1)

    assert removed == 1
    assert list(rate_limiter._rate_windows) == ["10.0.0.2"]
    # A second sweep inside the interval is a no-op
    assert rate_limiter.cleanup_expired_windows(now=1000.0 + settings.rate_limit_window + 30) == 0
    reset_rate_limits()
