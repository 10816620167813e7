"""
HTTP tests for the calculator and catalog routers.

Tests:
1-4.   Open: fresh part, declared part, unknown part, malformed stored record
5-7.   Walk the wizard: pick, edit rows, machining, run, results
8-10.  Locked results, bad index / field / transition
11-13. Save, close, reopen on results
14-16. Catalog search and listings, health
17-19. Session registry: idle expiry and size cap
20.    Startup log line
"""

import pytest
from fastapi.testclient import TestClient

from partcost.main import app
from partcost.routers.calculator import SessionRegistry
from partcost.session import CalculationSession


def _open(client, part_id):
    resp = client.post(f"/api/calculator/parts/{part_id}/open")
    assert resp.status_code == 200
    return resp.json()


def _url(session_id, path=""):
    return f"/api/calculator/{session_id}{path}"


def _to_results(client, session_id):
    body = client.get(_url(session_id)).json()
    while body["step"] != "results":
        body = client.post(_url(session_id, "/next")).json()
    return body


# ============================================================
# OPEN
# ============================================================

def test_open_fresh_part_starts_at_step_one(client, bare_part):
    body = _open(client, bare_part.id)
    assert body["step"] == 1
    assert body["editable"] is True
    assert body["currency"] == "EUR"
    assert len(body["data"]["step1Materials"]) == 1
    assert len(body["data"]["step2Components"]) == 1
    assert [op["name"] for op in body["data"]["secondaryOperations"]] == [
        "Surface protection", "Grinding", "Engraving",
    ]
    assert "totals" not in body


def test_open_declared_part_seeds_rows(client, declared_part):
    body = _open(client, declared_part.id)
    assert body["currency"] == "CHF"
    assert body["data"]["step1Materials"][0]["lengthPerPieceMm"] == 250
    assert [c["quantity"] for c in body["data"]["step2Components"]] == [2, 1]


def test_open_unknown_part_is_404(client):
    assert client.post("/api/calculator/parts/9999/open").status_code == 404


def test_open_part_with_malformed_record(client, db, bare_part):
    bare_part.price_calculation = {"materialId": "1", "lengthPerPieceMm": "120mm", "secondaryOperations": "none"}
    db.commit()
    body = _open(client, bare_part.id)
    assert body["step"] == "results"
    assert body["data"]["step1Materials"][0]["lengthPerPieceMm"] == 120


# ============================================================
# WIZARD
# ============================================================

def test_full_wizard_run(client, bare_part, inventory):
    sid = _open(client, bare_part.id)["session_id"]

    # Step 1: pick fills the empty row, then set the length
    body = client.post(_url(sid, "/materials"), json={"inventory_id": inventory["Flat bar 40x20 S235"]}).json()
    assert len(body["data"]["step1Materials"]) == 1
    row = body["data"]["step1Materials"][0]
    assert row["materialName"] == "Flat bar 40x20 S235"
    assert row["materialPrice"] == 2.5
    client.patch(_url(sid, "/materials/0"), json={"lengthPerPieceMm": 3000})
    assert client.post(_url(sid, "/next")).json()["step"] == 2

    # Step 2: two components
    client.post(_url(sid, "/components"), json={"inventory_id": inventory["Hex bolt M8x30"]})
    client.post(_url(sid, "/components"), json={"inventory_id": inventory["Hex nut M8"]})
    client.patch(_url(sid, "/components/0"), json={"quantity": 4})
    body = client.patch(_url(sid, "/components/1"), json={"quantity": 4}).json()
    assert [c["componentName"] for c in body["data"]["step2Components"]] == ["Hex bolt M8x30", "Hex nut M8"]
    client.post(_url(sid, "/next"))

    # Step 3: machining
    client.patch(_url(sid, "/operations/setup"), json={"hours": 1, "minutes": 30, "ratePerHour": 40})
    body = client.patch(_url(sid, "/operations/sawing"), json={"minutes": "6", "ratePerHour": "50"}).json()
    assert body["data"]["sawing"] == {"hours": 0, "minutes": 6, "ratePerHour": 50}
    client.post(_url(sid, "/next"))

    # Step 4: a custom add-on
    body = client.post(_url(sid, "/secondary-operations"), json={"name": "Painting", "price_per_piece": 1.5}).json()
    assert body["data"]["secondaryOperations"][-1] == {"kind": "custom", "name": "Painting", "pricePerPiece": 1.5}
    client.post(_url(sid, "/next"))

    # Step 5: run size
    client.patch(_url(sid, "/run"), json={"quantity": 10, "transport_cost": 30})
    body = client.post(_url(sid, "/next")).json()

    assert body["step"] == "results"
    assert body["editable"] is False
    totals = body["totals"]
    assert totals["materialCostPerPiece"] == pytest.approx(47.10)
    assert totals["componentCostPerPiece"] == pytest.approx(0.68)
    assert totals["setup"] == {"perPiece": pytest.approx(6), "total": pytest.approx(60)}
    assert totals["sawing"]["total"] == pytest.approx(50)
    assert totals["secondaryOpsPerPiece"] == pytest.approx(1.5)
    assert totals["transportPerPiece"] == pytest.approx(3)
    assert totals["totalPerPiece"] == pytest.approx(47.10 + 0.68 + 6 + 5 + 1.5 + 3)
    assert totals["totalForQuantity"] == pytest.approx(471 + 6.8 + 60 + 50 + 15 + 30)
    assert totals["weightPerPiece"] == pytest.approx(18.84)


def test_per_metre_pick(client, bare_part, inventory):
    sid = _open(client, bare_part.id)["session_id"]
    client.post(_url(sid, "/materials"), json={"inventory_id": inventory["UPN 100"]})
    body = client.patch(_url(sid, "/materials/0"), json={"lengthPerPieceMm": 2000}).json()
    assert body["data"]["step1Materials"][0]["materialPriceUnit"] == "per_m"

    totals = client.get(_url(sid, "/totals")).json()["totals"]
    assert totals["materialCostPerPiece"] == pytest.approx(36.0)
    assert totals["weightPerPiece"] == pytest.approx(21.2)


def test_add_without_pick_appends_empty_row(client, bare_part):
    sid = _open(client, bare_part.id)["session_id"]
    body = client.post(_url(sid, "/materials")).json()
    assert len(body["data"]["step1Materials"]) == 2
    body = client.delete(_url(sid, "/materials/0")).json()
    body = client.delete(_url(sid, "/materials/0")).json()
    assert len(body["data"]["step1Materials"]) == 1


# ============================================================
# ERRORS
# ============================================================

def test_results_are_locked_until_edit(client, bare_part):
    sid = _open(client, bare_part.id)["session_id"]
    _to_results(client, sid)

    assert client.patch(_url(sid, "/materials/0"), json={"materialPrice": 3}).status_code == 409
    assert client.patch(_url(sid, "/run"), json={"quantity": 3}).status_code == 409
    assert client.post(_url(sid, "/next")).status_code == 400

    body = client.post(_url(sid, "/edit")).json()
    assert body["step"] == 5
    assert client.patch(_url(sid, "/run"), json={"quantity": 3}).json()["data"]["quantity"] == 3


def test_bad_index_field_and_transition(client, bare_part, inventory):
    sid = _open(client, bare_part.id)["session_id"]
    assert client.post(_url(sid, "/back")).status_code == 400
    assert client.post(_url(sid, "/edit")).status_code == 400
    assert client.patch(_url(sid, "/materials/7"), json={"materialPrice": 1}).status_code == 404
    assert client.patch(_url(sid, "/materials/0"), json={"colour": "red"}).status_code == 400
    assert client.patch(_url(sid, "/operations/polishing"), json={"hours": 1}).status_code == 422
    # A component id is not a material
    resp = client.post(_url(sid, "/materials"), json={"inventory_id": inventory["Hex nut M8"]})
    assert resp.status_code == 404


def test_unknown_session_is_404(client):
    assert client.get(_url("nope")).status_code == 404
    assert client.post(_url("nope", "/next")).status_code == 404


# ============================================================
# SAVE / CLOSE / REOPEN
# ============================================================

def test_save_close_and_reopen_on_results(client, bare_part):
    sid = _open(client, bare_part.id)["session_id"]
    client.patch(_url(sid, "/operations/setup"), json={"hours": 2, "ratePerHour": 45})
    client.patch(_url(sid, "/run"), json={"quantity": 3})

    saved = client.post(_url(sid, "/save")).json()
    assert saved["ok"] is True
    assert saved["notifications"][0]["level"] == "success"

    assert client.delete(_url(sid)).json() == {"ok": True}
    assert client.get(_url(sid)).status_code == 404

    body = _open(client, bare_part.id)
    assert body["step"] == "results"
    assert body["data"]["setup"]["ratePerHour"] == 45
    assert body["totals"]["setup"]["total"] == pytest.approx(90)


def test_close_discards_unsaved_changes(client, bare_part):
    sid = _open(client, bare_part.id)["session_id"]
    client.patch(_url(sid, "/run"), json={"quantity": 12})
    client.delete(_url(sid))

    body = _open(client, bare_part.id)
    assert body["step"] == 1
    assert body["data"]["quantity"] == 0


def test_save_for_deleted_part_reports_failure(client, db, bare_part):
    sid = _open(client, bare_part.id)["session_id"]
    db.delete(bare_part)
    db.commit()

    saved = client.post(_url(sid, "/save")).json()
    assert saved["ok"] is False
    assert saved["notifications"][0]["level"] == "error"


# ============================================================
# CATALOG
# ============================================================

def test_session_search(client, bare_part, inventory):
    sid = _open(client, bare_part.id)["session_id"]
    body = client.get(_url(sid, "/search/materials"), params={"q": "upn"}).json()
    assert body["query"] == "upn"
    assert [item["name"] for item in body["items"]] == ["UPN 100"]

    body = client.get(_url(sid, "/search/components"), params={"q": "M8"}).json()
    assert sorted(item["name"] for item in body["items"]) == ["Hex bolt M8x30", "Hex nut M8"]


def test_catalog_listings(client, inventory):
    materials = {m["name"]: m for m in client.get("/api/catalog/materials").json()}
    assert set(materials) == {"Flat bar 40x20 S235", "UPN 100"}
    assert materials["Flat bar 40x20 S235"]["kgPerMeter"] == 6.28
    assert materials["UPN 100"]["kgPerMeter"] == 10.6
    assert materials["UPN 100"]["priceUnit"] == "per_m"

    components = client.get("/api/catalog/components", params={"q": "nut"}).json()
    assert [c["name"] for c in components] == ["Hex nut M8"]


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# ============================================================
# SESSION REGISTRY
# ============================================================

class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_idle_sessions_expire():
    clock = FakeClock()
    sessions = SessionRegistry(idle_seconds=60, max_sessions=10, clock=clock)
    stale = sessions.add(CalculationSession(part_id=1))
    clock.now += 30
    fresh = sessions.add(CalculationSession(part_id=2))
    clock.now += 45
    assert sessions.get(stale) is None
    assert sessions.get(fresh).part_id == 2
    assert len(sessions) == 1


def test_use_keeps_a_session_alive():
    clock = FakeClock()
    sessions = SessionRegistry(idle_seconds=60, max_sessions=10, clock=clock)
    sid = sessions.add(CalculationSession(part_id=1))
    for _ in range(5):
        clock.now += 50
        assert sessions.get(sid) is not None


def test_full_registry_drops_least_recently_used():
    clock = FakeClock()
    sessions = SessionRegistry(idle_seconds=3600, max_sessions=2, clock=clock)
    first = sessions.add(CalculationSession(part_id=1))
    clock.now += 1
    second = sessions.add(CalculationSession(part_id=2))
    clock.now += 1
    sessions.get(first)
    clock.now += 1
    third = sessions.add(CalculationSession(part_id=3))

    assert sessions.get(second) is None
    assert sessions.get(first) is not None
    assert sessions.get(third) is not None
    assert len(sessions) == 2


def test_startup_is_logged(caplog):
    with caplog.at_level("INFO", logger="partcost"):
        with TestClient(app):
            pass
    assert "started" in caplog.text
    assert "sqlite" in caplog.text
