from fastapi.testclient import TestClient

TRAINING = {
    "talent_type": "peserta_pelatihan",
    "detail": {
        "activity_name": "Workshop A",
        "organizer": "LPMP",
        "start_date": "2024-05-10",
        "duration_days": 2,
    },
}

MENTOR = {
    "talent_type": "pembimbing_lomba",
    "detail": {
        "competition_name": "Olimpiade Sains",
        "level": "provinsi",
        "organizer": "Dinas Pendidikan",
        "field": "akademik",
        "achievement": "Juara 2",
    },
}


def _submit(client: TestClient, headers: dict, payload: dict = TRAINING) -> str:
    resp = client.post("/api/v1/talents", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["id"]


def test_school_admin_approves_talent_and_submitter_is_notified(client: TestClient, accounts, login) -> None:
    gtk = login("gtk_a")
    talent_id = _submit(client, gtk)

    resp = client.post(f"/api/v1/verifications/talents/{talent_id}/approve", headers=login("admin_a"))
    assert resp.status_code == 200
    talent = resp.json()["data"]
    assert talent["status"] == "approved"
    assert talent["decision"]["reviewer"]["full_name"] == "Admin A"
    assert "reason" not in talent["decision"]
    assert talent["decision"]["decided_at"]

    unread = client.get("/api/v1/me/notifications/unread-count", headers=gtk)
    assert unread.json()["data"]["count"] == 1

    notifications = client.get("/api/v1/me/notifications", headers=gtk).json()["data"]
    assert notifications[0]["type"] == "talent_approved"
    assert notifications[0]["message"] == "Talenta Anda telah disetujui"
    assert notifications[0]["talent_id"] == talent_id


def test_second_decision_is_a_conflict(client: TestClient, accounts, login) -> None:
    talent_id = _submit(client, login("gtk_a"))
    admin = login("admin_a")
    assert client.post(f"/api/v1/verifications/talents/{talent_id}/approve", headers=admin).status_code == 200

    again = client.post(f"/api/v1/verifications/talents/{talent_id}/approve", headers=admin)
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "INVALID_STATE"

    reject = client.post(
        f"/api/v1/verifications/talents/{talent_id}/reject",
        json={"rejection_reason": "terlambat"},
        headers=login("super"),
    )
    assert reject.status_code == 409


def test_reject_requires_reason(client: TestClient, accounts, login) -> None:
    talent_id = _submit(client, login("gtk_a"))
    admin = login("admin_a")

    for body in ({}, {"rejection_reason": ""}, {"rejection_reason": "   "}):
        resp = client.post(f"/api/v1/verifications/talents/{talent_id}/reject", json=body, headers=admin)
        assert resp.status_code == 422
        assert resp.json()["error"]["details"][0]["field"] == "rejection_reason"

    resp = client.post(
        f"/api/v1/verifications/talents/{talent_id}/reject",
        json={"rejection_reason": "  Dokumen tidak valid  "},
        headers=admin,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "rejected"
    assert resp.json()["data"]["decision"]["reason"] == "Dokumen tidak valid"


def test_rejection_notification_carries_reason(client: TestClient, accounts, login) -> None:
    gtk = login("gtk_a")
    talent_id = _submit(client, gtk)
    client.post(
        f"/api/v1/verifications/talents/{talent_id}/reject",
        json={"rejection_reason": "Dokumen tidak valid"},
        headers=login("admin_a"),
    )

    notification = client.get("/api/v1/me/notifications", headers=gtk).json()["data"][0]
    assert notification["type"] == "talent_rejected"
    assert notification["message"] == "Talenta Anda ditolak. Alasan: Dokumen tidak valid"

    read = client.patch(f"/api/v1/me/notifications/{notification['id']}/read", headers=gtk)
    assert read.status_code == 200
    assert client.get("/api/v1/me/notifications/unread-count", headers=gtk).json()["data"]["count"] == 0

    other = client.patch(f"/api/v1/me/notifications/{notification['id']}/read", headers=login("gtk_a2"))
    assert other.status_code == 404


def test_reviewer_from_another_school_is_forbidden(client: TestClient, accounts, login) -> None:
    talent_id = _submit(client, login("gtk_a"))
    resp = client.post(f"/api/v1/verifications/talents/{talent_id}/approve", headers=login("admin_b"))
    assert resp.status_code == 403

    resp = client.get(f"/api/v1/talents/{talent_id}", headers=login("gtk_a"))
    assert resp.json()["data"]["status"] == "pending"


def test_gtk_cannot_review(client: TestClient, accounts, login) -> None:
    talent_id = _submit(client, login("gtk_a"))
    gtk2 = login("gtk_a2")

    assert client.post(f"/api/v1/verifications/talents/{talent_id}/approve", headers=gtk2).status_code == 403
    assert client.get("/api/v1/verifications/talents", headers=gtk2).status_code == 403
    resp = client.post("/api/v1/verifications/talents/batch/approve", json={"ids": [talent_id]}, headers=gtk2)
    assert resp.status_code == 403


def test_unknown_talent_is_not_found(client: TestClient, accounts, login) -> None:
    resp = client.post("/api/v1/verifications/talents/missing/approve", headers=login("super"))
    assert resp.status_code == 404


def test_pending_queue_is_oldest_first_and_scoped(client: TestClient, accounts, login) -> None:
    first = _submit(client, login("gtk_a"))
    second = _submit(client, login("gtk_a2"), MENTOR)
    _submit(client, login("gtk_b"))
    decided = _submit(client, login("gtk_a"))
    client.post(f"/api/v1/verifications/talents/{decided}/approve", headers=login("admin_a"))

    resp = client.get("/api/v1/verifications/talents", headers=login("admin_a"))
    assert resp.status_code == 200
    assert [item["id"] for item in resp.json()["data"]] == [first, second]

    resp = client.get(
        "/api/v1/verifications/talents",
        params={"talent_type": "pembimbing_lomba"},
        headers=login("super"),
    )
    assert [item["id"] for item in resp.json()["data"]] == [second]


def test_batch_approve_reports_partial_failures(client: TestClient, accounts, login) -> None:
    ok_1 = _submit(client, login("gtk_a"))
    ok_2 = _submit(client, login("gtk_a2"))
    other_school = _submit(client, login("gtk_b"))
    decided = _submit(client, login("gtk_a"))
    admin = login("admin_a")
    client.post(f"/api/v1/verifications/talents/{decided}/approve", headers=admin)

    resp = client.post(
        "/api/v1/verifications/talents/batch/approve",
        json={"ids": [ok_1, other_school, ok_2, decided, "missing"]},
        headers=admin,
    )
    assert resp.status_code == 200
    body = resp.json()["data"]
    assert body["approved_count"] == 2
    assert body["failed_count"] == 3
    assert [item["id"] for item in body["failed_ids"]] == [other_school, decided, "missing"]
    assert all(item["reason"] for item in body["failed_ids"])

    assert client.get(f"/api/v1/talents/{ok_2}", headers=admin).json()["data"]["status"] == "approved"
    assert client.get(f"/api/v1/talents/{other_school}", headers=login("admin_b")).json()["data"]["status"] == "pending"


def test_batch_reject_validates_upfront(client: TestClient, accounts, login) -> None:
    talent_id = _submit(client, login("gtk_a"))
    admin = login("admin_a")

    resp = client.post(
        "/api/v1/verifications/talents/batch/reject",
        json={"ids": [talent_id], "rejection_reason": " "},
        headers=admin,
    )
    assert resp.status_code == 422
    assert client.get(f"/api/v1/talents/{talent_id}", headers=admin).json()["data"]["status"] == "pending"

    resp = client.post("/api/v1/verifications/talents/batch/reject", json={"ids": [], "rejection_reason": "x"}, headers=admin)
    assert resp.status_code == 422
    assert resp.json()["error"]["details"][0]["field"] == "ids"

    resp = client.post(
        "/api/v1/verifications/talents/batch/approve",
        json={"ids": [f"id-{n}" for n in range(101)]},
        headers=admin,
    )
    assert resp.status_code == 422

    resp = client.post(
        "/api/v1/verifications/talents/batch/reject",
        json={"ids": [talent_id], "rejection_reason": "Tidak sesuai"},
        headers=admin,
    )
    assert resp.json()["data"] == {"rejected_count": 1, "failed_count": 0, "failed_ids": []}


def test_dashboard_summary_per_role(client: TestClient, accounts, login) -> None:
    gtk = login("gtk_a")
    talent_id = _submit(client, gtk)
    _submit(client, gtk, MENTOR)
    _submit(client, login("gtk_b"))
    client.post(f"/api/v1/verifications/talents/{talent_id}/approve", headers=login("admin_a"))

    summary = client.get("/api/v1/dashboard/summary", headers=login("super")).json()["data"]
    assert summary["total_schools"] == 2
    assert summary["total_gtk"] == 3
    assert summary["total_talents"] == 3
    assert summary["talents_by_status"] == {"pending": 2, "approved": 1, "rejected": 0}

    summary = client.get("/api/v1/dashboard/summary", headers=login("admin_a")).json()["data"]
    assert summary["total_gtk"] == 2
    assert summary["total_talents"] == 2
    assert summary["pending_verifications"] == 1

    summary = client.get("/api/v1/dashboard/summary", headers=gtk).json()["data"]
    assert summary["my_talents"]["total"] == 2
    assert summary["unread_notifications"] == 1
