def test_detail(client):
    resp = client.get("/ingestions/42")

    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["ingestion"]["state"] == "Matched"
    assert body["counts"] == {"unmatched": 2, "to_create": 1}
    assert body["draft"]["vendor_name"] == "Acme Building Materials"


def test_detail_not_found(client):
    resp = client.get("/ingestions/404")

    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "not_found"


def test_assign_returns_counts(client, store):
    resp = client.post("/ingestions/42/lines/1/assign", json={"item_id": "ITEM-1"})

    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "counts": {"unmatched": 1, "to_create": 1}}
    assert store.lines[1]["match_state"] == "human_matched"


def test_assign_without_item_id_is_400(client):
    assert client.post("/ingestions/42/lines/1/assign").status_code == 400
    assert client.post("/ingestions/42/lines/1/assign", json={"item_id": "  "}).status_code == 400


def test_assign_on_line_of_other_ingestion_is_400(client, store):
    store.add_ingestion(77)
    store.add_invoice(770, 77)
    store.add_line(10, 770, 1)

    resp = client.post("/ingestions/42/lines/10/assign", json={"item_id": "ITEM-1"})

    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "ingestion/line mismatch"
    assert store.writes == []


def test_needs_create(client, store):
    resp = client.post("/ingestions/42/lines/3/needs-create")

    assert resp.status_code == 200
    assert resp.json()["counts"] == {"unmatched": 1, "to_create": 2}


def test_ready_with_unmatched_lines_is_409(client, store):
    resp = client.post("/ingestions/42/ready")

    assert resp.status_code == 409
    detail = resp.json()["detail"]
    assert detail["reason"] == "unmatched_lines"
    assert detail["counts"]["unmatched"] == 2
    assert store.ingestions[42]["approval_status"] == "pending"


def test_ready_after_matching_all_lines(client):
    client.post("/ingestions/42/lines/1/assign", json={"item_id": "ITEM-1"})
    client.post("/ingestions/42/lines/3/needs-create")

    resp = client.post("/ingestions/42/ready")

    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "approval_status": "ready"}


def test_upstream_failure_is_502(client, store):
    store.fail_on.add("list_lines")

    resp = client.get("/ingestions/42")

    assert resp.status_code == 502
    assert resp.json()["detail"]["code"] == "upstream_failure"


def test_item_search(client):
    resp = client.get("/ingestions/42/items", params={"q": "cem"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["count"] == 1
    assert body["items"][0]["item_id"] == "ITEM-1"


def test_candidates(client, store):
    store.candidates = [
        {"line_id": 1, "candidate_item_id": "ITEM-3", "candidate_name": "Aggregate", "hsn8": None, "similarity": 0.5, "reason": "name", "rank": 2},
        {"line_id": 1, "candidate_item_id": "ITEM-1", "candidate_name": "Cement", "hsn8": None, "similarity": 0.9, "reason": "name", "rank": 1},
    ]

    resp = client.get("/lines/1/candidates", params={"top": 1})

    assert resp.status_code == 200
    assert resp.json()["items"][0]["item_id"] == "ITEM-1"
    assert resp.json()["count"] == 1
    assert client.get("/lines/999/candidates").status_code == 404


def test_list_and_metrics(client, store):
    store.add_ingestion(53, status="failed", created_at="2026-10-13T00:00:00+00:00")

    listing = client.get("/ingestions/list", params={"state": "Failed"}).json()
    assert listing["count"] == 1
    assert listing["items"][0]["id"] == 53

    metrics = client.get("/ingestions/metrics").json()
    assert metrics["failed_count"] == 1
    assert set(metrics) == {"billed_30d", "billed_total", "ready_count", "failed_count"}


def test_delete(client, store):
    assert client.delete("/ingestions/42").json() == {"ok": True}
    assert client.delete("/ingestions/42").status_code == 404


def test_detail_and_assign_accept_free_form_draft_values(client, store):
    store.ingestions[42]["bill_payload_draft"]["line_items"] = [
        {"description": "Cement", "quantity": "", "rate": "120.50", "discount": "10%"},
    ]

    detail = client.get("/ingestions/42")
    assert detail.status_code == 200
    assert detail.json()["draft"]["line_items"][0]["discount"] == "10%"

    assert client.post("/ingestions/42/lines/1/assign", json={"item_id": "ITEM-1"}).status_code == 200
    entry = store.ingestions[42]["bill_payload_draft"]["line_items"][0]
    assert entry == {"description": "Cement", "quantity": "", "rate": "120.50", "discount": "10%", "item_id": "ITEM-1"}
