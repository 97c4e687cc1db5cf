from fastapi.testclient import TestClient

from salesdesk.api.dependencies import get_context, get_db
from salesdesk.auth.jwt import create_access_token, get_current_actor
from salesdesk.constants import CEO, FINANCIAL_MANAGER, PROPERTY_CONSULTANT, SALES_MANAGER
from salesdesk.main import app
from salesdesk.services import unit_blocks as block_service
from salesdesk.utils.pdf_utils import shutdown_renderer

STANDARD_PLAN = {"listPrice": 1000000, "annualRatePercent": 12, "durationYears": 6, "frequency": "quarterly"}


def _override_get_db(session):
    def _generator():
        try:
            yield session
        finally:
            pass

    return _generator


def _override_actor(actor):
    def _provider():
        return actor

    return _provider


def _client(db_session, ctx, actor=None):
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_context] = lambda: ctx
    if actor is not None:
        app.dependency_overrides[get_current_actor] = _override_actor(actor)
    return TestClient(app)


def _auth(actor):
    return {"Authorization": f"Bearer {create_access_token(actor.id, actor.role, actor.name)}"}


def test_health():
    client = TestClient(app)
    try:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
    finally:
        client.close()


def test_calculate_requires_a_token(db_session, ctx):
    client = _client(db_session, ctx)
    try:
        response = client.post("/calculate", json={"mode": "standardMode", "stdPlan": STANDARD_PLAN})
        assert response.status_code == 401
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_calculate_standard_mode(db_session, ctx, actors):
    client = _client(db_session, ctx)
    try:
        response = client.post(
            "/calculate",
            json={"mode": "standardMode", "stdPlan": STANDARD_PLAN},
            headers=_auth(actors[PROPERTY_CONSULTANT]),
        )
        assert response.status_code == 200
        payload = response.json()
        assert payload["ok"] is True
        assert payload["schedule"][0]["kindTag"] == "dp"
        assert payload["schedule"][0]["amount"] == "200000.00"
        assert payload["totals"]["nominalExclMaintenance"] == "1000000.00"
        assert payload["evaluation"]["decision"] == "ACCEPT"
        assert "writtenAmount" not in payload["schedule"][0]
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_generate_plan_adds_words_and_dates(db_session, ctx, actors):
    client = _client(db_session, ctx, actors[PROPERTY_CONSULTANT])
    try:
        response = client.post(
            "/generate-plan",
            json={"mode": "standardMode", "stdPlan": STANDARD_PLAN, "baseDate": "2025-01-15"},
        )
        assert response.status_code == 200
        first = response.json()["schedule"][0]
        assert first["writtenAmount"] == "Two hundred thousand Egyptian pounds"
        assert first["date"] == "15/01/2025"
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_infeasible_plan_maps_to_422(db_session, ctx, actors):
    client = _client(db_session, ctx, actors[PROPERTY_CONSULTANT])
    try:
        response = client.post(
            "/calculate",
            json={
                "mode": "evaluateCustomPrice",
                "stdPlan": STANDARD_PLAN,
                "inputs": {
                    "splitFirstYear": True,
                    "firstYearPayments": [{"amount": 550000, "month": 3}, {"amount": 550000, "month": 6}],
                },
            },
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["kind"] == "INFEASIBLE_PLAN"
        assert error["details"]["residual"] == "-100000.00"
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_malformed_request_is_a_validation_error(db_session, ctx, actors):
    client = _client(db_session, ctx, actors[PROPERTY_CONSULTANT])
    try:
        response = client.post("/calculate", json={"stdPlan": STANDARD_PLAN})
        assert response.status_code == 422
        assert response.json()["error"]["kind"] == "VALIDATION"

        response = client.post("/calculate", json={"mode": "mystery", "stdPlan": STANDARD_PLAN})
        assert response.status_code == 422
        assert response.json()["error"]["details"]["field"] == "mode"
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_deal_workflow_over_http(db_session, ctx, actors, create_unit):
    unit = create_unit()
    consultant = _auth(actors[PROPERTY_CONSULTANT])
    client = _client(db_session, ctx)
    try:
        response = client.post(
            "/deals/",
            json={
                "title": "Twin house offer",
                "calculation": {"mode": "evaluateCustomPrice", "unitId": unit.id, "inputs": {"dpValue": 20}},
                "buyers": [{"buyer_name": "Mona Adel"}],
            },
            headers=consultant,
        )
        assert response.status_code == 200
        deal = response.json()
        assert deal["status"] == "draft"
        assert deal["decision"] == "ACCEPT"
        assert deal["createdBy"] == actors[PROPERTY_CONSULTANT].id

        response = client.post(f"/deals/{deal['id']}/submit", headers=consultant)
        assert response.status_code == 200
        assert response.json()["status"] == "pending_approval"

        response = client.post(f"/deals/{deal['id']}/approve", headers=consultant)
        assert response.status_code == 403
        assert response.json()["error"]["kind"] == "FORBIDDEN_ROLE"

        response = client.post(f"/deals/{deal['id']}/approve", headers=_auth(actors[SALES_MANAGER]))
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        response = client.get(f"/history/deal/{deal['id']}", headers=consultant)
        assert [row["action"] for row in response.json()] == ["created", "submit", "approve_sm"]

        response = client.post(f"/deals/{deal['id']}/teleport", headers=consultant)
        assert response.status_code == 404
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_missing_deal_is_404(db_session, ctx, actors):
    client = _client(db_session, ctx, actors[SALES_MANAGER])
    try:
        response = client.get("/deals/999")
        assert response.status_code == 404
        assert response.json()["error"]["kind"] == "NOT_FOUND"
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_second_block_approval_is_a_conflict_response(db_session, ctx, actors, create_unit, create_deal):
    unit = create_unit()
    first = create_deal(unit=unit)
    second = create_deal(unit=unit)
    client = _client(db_session, ctx)
    try:
        consultant = _auth(actors[PROPERTY_CONSULTANT])
        fm = _auth(actors[FINANCIAL_MANAGER])
        first_block = client.post("/blocks/", json={"unitId": unit.id, "dealId": first.id}, headers=consultant).json()
        second_block = client.post("/blocks/", json={"unitId": unit.id, "dealId": second.id}, headers=consultant).json()

        response = client.post(f"/blocks/{first_block['id']}/approve", headers=fm)
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        response = client.post(f"/blocks/{second_block['id']}/approve", headers=fm)
        assert response.status_code == 409
        assert response.json()["error"]["kind"] == "INVALID_TRANSITION"

        response = client.get(f"/units/{unit.id}/availability", headers=consultant)
        assert response.status_code == 200
        availability = response.json()
        assert availability["unit"]["available"] is False
        assert availability["unit"]["status"] == "BLOCKED"
        assert availability["activeBlock"]["id"] == first_block["id"]
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_pricing_form_download(db_session, ctx, actors, create_deal):
    deal = create_deal()
    client = _client(db_session, ctx, actors[PROPERTY_CONSULTANT])
    try:
        response = client.post("/documents/", json={"documentType": "pricing_form", "dealId": deal.id})
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")
    finally:
        client.close()
        app.dependency_overrides.clear()
        shutdown_renderer()


def test_thresholds_round_trip(db_session, ctx, actors):
    client = _client(db_session, ctx)
    try:
        response = client.put("/thresholds/", json={"dpPercentMin": 10}, headers=_auth(actors[SALES_MANAGER]))
        assert response.status_code == 403

        response = client.put("/thresholds/", json={"dpPercentMin": 10}, headers=_auth(actors[CEO]))
        assert response.status_code == 200

        response = client.get("/thresholds/", headers=_auth(actors[SALES_MANAGER]))
        assert response.json()["dpPercentMin"] == "10"
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_notifications_for_role(db_session, ctx, actors, create_deal):
    deal = create_deal()
    block_service.request_block(ctx, actors[PROPERTY_CONSULTANT], deal.unit_id, deal.id)
    client = _client(db_session, ctx, actors[FINANCIAL_MANAGER])
    try:
        response = client.get("/notifications/", params={"unread_only": True})
        assert response.status_code == 200
        notes = [note for note in response.json() if note["event"] == "block.requested"]
        assert len(notes) == 1

        response = client.post(f"/notifications/{notes[0]['id']}/read")
        assert response.status_code == 200
        assert response.json()["readAt"] is not None
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_unit_reads_expire_lapsed_blocks(db_session, ctx, actors, create_deal, clock):
    deal = create_deal()
    block = block_service.request_block(ctx, actors[PROPERTY_CONSULTANT], deal.unit_id, deal.id)
    block_service.approve_block(ctx, actors[FINANCIAL_MANAGER], block.id)
    clock.advance(days=8)
    client = _client(db_session, ctx, actors[PROPERTY_CONSULTANT])
    try:
        response = client.get("/units/", params={"available": True})
        assert response.status_code == 200
        assert deal.unit_id in [unit["id"] for unit in response.json()]

        response = client.get(f"/units/{deal.unit_id}")
        assert response.json()["status"] == "AVAILABLE"
        assert response.json()["available"] is True
    finally:
        client.close()
        app.dependency_overrides.clear()
