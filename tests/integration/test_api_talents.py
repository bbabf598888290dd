from fastapi.testclient import TestClient

TRAINING = {
    "talent_type": "peserta_pelatihan",
    "detail": {
        "activity_name": "Workshop Kurikulum Merdeka",
        "organizer": "Dinas Pendidikan",
        "start_date": "2024-03-01",
        "duration_days": 3,
    },
}

INTEREST = {
    "talent_type": "minat_bakat",
    "detail": {"interest_name": "Fotografi", "description": "Dokumentasi kegiatan sekolah"},
}


def _create(client: TestClient, headers: dict, payload: dict = TRAINING) -> dict:
    resp = client.post("/api/v1/talents", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def test_gtk_creates_pending_talent(client: TestClient, accounts, login) -> None:
    talent = _create(client, login("gtk_a"))

    assert talent["status"] == "pending"
    assert talent["talent_type"] == "peserta_pelatihan"
    assert talent["detail"]["duration_days"] == 3
    assert talent["submitter"]["full_name"] == "Guru A"
    assert talent["submitter"]["school_name"] == "SMA Negeri 1"
    assert talent["decision"] is None
    assert talent["attachment"] is None


def test_create_via_me_alias(client: TestClient, accounts, login) -> None:
    resp = client.post("/api/v1/me/talents", json=INTEREST, headers=login("gtk_a"))
    assert resp.status_code == 201
    assert resp.json()["data"]["detail"]["interest_name"] == "Fotografi"


def test_only_gtk_can_submit(client: TestClient, accounts, login) -> None:
    resp = client.post("/api/v1/talents", json=TRAINING, headers=login("admin_a"))
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "FORBIDDEN"


def test_invalid_detail_reports_field_paths(client: TestClient, accounts, login) -> None:
    payload = {
        "talent_type": "peserta_pelatihan",
        "detail": {"activity_name": "  ", "start_date": "2024-03-01", "duration_days": 0, "extra": 1},
    }
    resp = client.post("/api/v1/talents", json=payload, headers=login("gtk_a"))
    assert resp.status_code == 422

    error = resp.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    fields = {item["field"] for item in error["details"]}
    assert {"detail.activity_name", "detail.organizer", "detail.duration_days", "detail.extra"} <= fields


def test_unknown_talent_type(client: TestClient, accounts, login) -> None:
    resp = client.post("/api/v1/talents", json={"talent_type": "sulap", "detail": {}}, headers=login("gtk_a"))
    assert resp.status_code == 422
    assert resp.json()["error"]["details"][0]["field"] == "talent_type"


def test_missing_body_fields_use_request_paths(client: TestClient, accounts, login) -> None:
    resp = client.post("/api/v1/talents", json={"detail": {}}, headers=login("gtk_a"))
    assert resp.status_code == 422
    assert resp.json()["error"]["details"][0]["field"] == "talent_type"


def test_list_is_scoped_by_role(client: TestClient, accounts, login) -> None:
    gtk_a, gtk_a2, gtk_b = login("gtk_a"), login("gtk_a2"), login("gtk_b")
    _create(client, gtk_a)
    _create(client, gtk_a2, INTEREST)
    _create(client, gtk_b)

    def count(headers: dict) -> int:
        resp = client.get("/api/v1/talents", headers=headers)
        assert resp.status_code == 200
        return resp.json()["meta"]["total_count"]

    assert count(gtk_a) == 1
    assert count(login("admin_a")) == 2
    assert count(login("admin_b")) == 1
    assert count(login("super")) == 3


def test_school_admin_cannot_widen_scope_with_filters(client: TestClient, accounts, login) -> None:
    _create(client, login("gtk_b"))
    resp = client.get(
        "/api/v1/talents",
        params={"school_id": accounts["gtk_b"].school_id},
        headers=login("admin_a"),
    )
    assert resp.status_code == 200
    assert resp.json()["data"] == []


def test_list_filters_and_pagination(client: TestClient, accounts, login) -> None:
    headers = login("gtk_a")
    for _ in range(3):
        _create(client, headers)
    _create(client, headers, INTEREST)

    resp = client.get("/api/v1/me/talents", params={"talent_type": "peserta_pelatihan", "limit": 2}, headers=headers)
    body = resp.json()
    assert len(body["data"]) == 2
    assert body["meta"] == {"current_page": 1, "per_page": 2, "total_pages": 2, "total_count": 3}

    resp = client.get("/api/v1/talents", params={"status": "approved"}, headers=headers)
    assert resp.json()["meta"]["total_count"] == 0


def test_list_rejects_bad_paging_and_filters(client: TestClient, accounts, login) -> None:
    headers = login("super")
    resp = client.get("/api/v1/talents", params={"limit": 500}, headers=headers)
    assert resp.status_code == 422
    assert resp.json()["error"]["details"][0]["field"] == "limit"

    resp = client.get("/api/v1/talents", params={"status": "archived"}, headers=headers)
    assert resp.status_code == 422
    assert resp.json()["error"]["details"][0]["field"] == "status"


def test_other_users_talent_is_not_found(client: TestClient, accounts, login) -> None:
    talent = _create(client, login("gtk_a"))

    for who in ("gtk_a2", "gtk_b", "admin_b"):
        resp = client.get(f"/api/v1/talents/{talent['id']}", headers=login(who))
        assert resp.status_code == 404, who

    assert client.get(f"/api/v1/talents/{talent['id']}", headers=login("admin_a")).status_code == 200
    assert client.get("/api/v1/talents/does-not-exist", headers=login("super")).status_code == 404


def test_edit_pending_talent(client: TestClient, accounts, login) -> None:
    headers = login("gtk_a")
    talent = _create(client, headers)

    detail = {**TRAINING["detail"], "duration_days": 5}
    resp = client.put(f"/api/v1/talents/{talent['id']}", json={"detail": detail}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["detail"]["duration_days"] == 5
    assert resp.json()["data"]["status"] == "pending"

    resp = client.put(
        f"/api/v1/me/talents/{talent['id']}",
        json={"talent_type": "minat_bakat", "detail": INTEREST["detail"]},
        headers=headers,
    )
    assert resp.status_code == 422


def test_edit_and_delete_after_decision_conflict(client: TestClient, accounts, login) -> None:
    headers = login("gtk_a")
    talent = _create(client, headers)
    approved = client.post(f"/api/v1/verifications/talents/{talent['id']}/approve", headers=login("admin_a"))
    assert approved.status_code == 200

    resp = client.put(f"/api/v1/talents/{talent['id']}", json={"detail": TRAINING["detail"]}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "INVALID_STATE"

    resp = client.delete(f"/api/v1/talents/{talent['id']}", headers=headers)
    assert resp.status_code == 409


def test_reviewer_cannot_edit_someone_elses_talent(client: TestClient, accounts, login) -> None:
    talent = _create(client, login("gtk_a"))
    resp = client.put(f"/api/v1/talents/{talent['id']}", json={"detail": TRAINING["detail"]}, headers=login("admin_a"))
    assert resp.status_code == 403


def test_delete_pending_talent_keeps_history(client: TestClient, accounts, login) -> None:
    headers = login("gtk_a")
    talent = _create(client, headers)

    assert client.delete(f"/api/v1/talents/{talent['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/v1/talents/{talent['id']}", headers=headers).status_code == 404
    assert client.get(f"/api/v1/talents/{talent['id']}/history", headers=headers).status_code == 404

    history = client.get(f"/api/v1/talents/{talent['id']}/history", headers=login("super"))
    assert history.status_code == 200
    assert [event["action"] for event in history.json()["data"]] == ["created", "deleted"]


def test_history_records_each_change(client: TestClient, accounts, login) -> None:
    headers = login("gtk_a")
    talent = _create(client, headers)
    client.put(f"/api/v1/talents/{talent['id']}", json={"detail": TRAINING["detail"]}, headers=headers)
    client.post(
        f"/api/v1/verifications/talents/{talent['id']}/reject",
        json={"rejection_reason": "Sertifikat tidak terbaca"},
        headers=login("admin_a"),
    )

    resp = client.get(f"/api/v1/talents/{talent['id']}/history", headers=headers)
    events = resp.json()["data"]
    assert [event["action"] for event in events] == ["created", "edited", "rejected"]
    assert events[-1]["actor"]["full_name"] == "Admin A"
    assert events[-1]["payload"] == {"reason": "Sertifikat tidak terbaca"}
