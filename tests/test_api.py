"""
End-to-end HTTP flows through the blueprints.

Test blocks:
  1. Health and framework errors
  2. Engagement → payment through the API
  3. Error envelopes on the signature endpoints
"""

from datetime import date

import pytest


def _engagement_payload(budget, **extra):
    payload = {
        "grant_id": budget["grant"].id,
        "budget_line_id": budget["line"].id,
        "sub_budget_line_id": budget["sub_line"].id,
        "amount": 1000,
        "date": date.today().isoformat(),
        "description": "Achat d'ordinateurs",
        "supplier": "InfoPlus",
    }
    payload.update(extra)
    return payload


@pytest.fixture()
def headers(auth_header, grant_coordinator, accountant, national_coordinator):
    return {
        "gc": auth_header(grant_coordinator),
        "acc": auth_header(accountant),
        "nc": auth_header(national_coordinator),
    }


# ── 1. Health and framework errors ───────────────────────────────────────────


def test_health(client):
    res = client.get("/api/v1/health")
    assert res.status_code == 200
    assert res.get_json()["status"] == "ok"


def test_liveness_checks_database(client):
    res = client.get("/api/v1/health/live")
    assert res.status_code == 200


def test_unknown_route_is_json_404(client):
    res = client.get("/api/v1/nowhere")
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_non_json_body_is_415(client, headers):
    res = client.post("/api/v1/engagements", data="amount=1", headers={
        **headers["gc"], "Content-Type": "application/x-www-form-urlencoded",
    })
    assert res.status_code == 415


def test_security_headers(client):
    res = client.get("/api/v1/health")
    assert res.headers["X-Content-Type-Options"] == "nosniff"


# ── 2. Engagement → payment ──────────────────────────────────────────────────


def test_engagement_to_payment_flow(client, budget, headers):
    # created with the Grant Coordinator's own signature
    res = client.post("/api/v1/engagements", headers=headers["gc"], json=_engagement_payload(
        budget, approvals={"supervisor1": {"name": "Awa Diallo", "signature": True}},
    ))
    assert res.status_code == 201
    engagement = res.get_json()
    eid = engagement["id"]
    assert engagement["approvals"]["supervisor1"]["signature"] is True
    assert engagement["version"] == 1

    res = client.post(f"/api/v1/engagements/{eid}/sign", headers=headers["acc"],
                      json={"slot": "supervisor2", "version": 1})
    assert res.status_code == 200
    assert res.get_json()["version"] == 2

    res = client.post(f"/api/v1/engagements/{eid}/sign", headers=headers["nc"],
                      json={"slot": "finalApproval", "version": 2, "observation": "Bon pour accord"})
    assert res.status_code == 200
    body = res.get_json()
    assert body["status"] == "approved"
    assert body["approvals"]["finalApproval"]["observation"] == "Bon pour accord"

    # the Accountant now sees "paid" as an available move
    res = client.get(f"/api/v1/engagements/{eid}", headers=headers["acc"])
    assert res.get_json()["allowed_statuses"] == ["paid"]

    res = client.get("/api/v1/payments/treasury?amount=500", headers=headers["acc"])
    assert res.get_json()["balance_after_payment"] == 1500

    res = client.post("/api/v1/payments", headers=headers["gc"], json={
        "engagement_id": eid, "amount": 500, "description": "Acompte",
        "invoice_number": "FAC-9", "date": date.today().isoformat(),
    })
    assert res.status_code == 201
    assert res.get_json()["status"] == "pending"

    res = client.post("/api/v1/payments", headers=headers["gc"], json={
        "engagement_id": eid, "amount": 2500, "description": "Solde",
        "invoice_number": "FAC-10", "date": date.today().isoformat(),
    })
    assert res.status_code == 422


def test_preview_endpoint(client, budget, headers):
    res = client.get(
        f"/api/v1/engagements/preview?sub_budget_line_id={budget['sub_line'].id}&amount=1000",
        headers=headers["gc"],
    )
    assert res.status_code == 200
    assert res.get_json()["new_available_amount"] == 4000


def test_notifications_follow_signatures(client, make_engagement, headers):
    make_engagement()
    assert client.get("/api/v1/notifications/pending", headers=headers["gc"]).get_json()["total"] == 1
    assert client.get("/api/v1/notifications/pending", headers=headers["acc"]).get_json()["total"] == 1
    assert client.get("/api/v1/notifications/pending", headers=headers["nc"]).get_json()["total"] == 0


# ── 3. Error envelopes ───────────────────────────────────────────────────────


def test_stale_version_is_409(client, make_engagement, headers):
    engagement = make_engagement()
    res = client.post(f"/api/v1/engagements/{engagement.id}/sign", headers=headers["gc"],
                      json={"slot": "supervisor1", "version": 1})
    assert res.status_code == 200

    res = client.post(f"/api/v1/engagements/{engagement.id}/sign", headers=headers["acc"],
                      json={"slot": "supervisor2", "version": 1})
    assert res.status_code == 409
    body = res.get_json()
    assert body["code"] == "ERR_CONFLICT_VERSION"
    assert body["details"]["actual_version"] == 2


def test_sign_requires_version(client, make_engagement, headers):
    engagement = make_engagement()
    res = client.post(f"/api/v1/engagements/{engagement.id}/sign", headers=headers["gc"],
                      json={"slot": "supervisor1"})
    assert res.status_code == 400
    assert res.get_json()["details"] == {"version": "required"}


def test_final_before_supervisors_is_signature_order_error(client, make_engagement, headers):
    engagement = make_engagement()
    res = client.post(f"/api/v1/engagements/{engagement.id}/sign", headers=headers["nc"],
                      json={"slot": "finalApproval", "version": 1})
    assert res.status_code == 403
    body = res.get_json()
    assert body["code"] == "ERR_SIGNATURE_ORDER"
    assert body["details"]["reason"] == "prior_signatures_missing"


def test_wrong_profession_is_forbidden(client, make_engagement, headers):
    engagement = make_engagement()
    res = client.post(f"/api/v1/engagements/{engagement.id}/sign", headers=headers["acc"],
                      json={"slot": "supervisor1", "version": 1})
    assert res.status_code == 403
    assert res.get_json()["code"] == "ERR_FORBIDDEN"


def test_resign_is_forbidden(client, make_engagement, headers):
    engagement = make_engagement()
    client.post(f"/api/v1/engagements/{engagement.id}/sign", headers=headers["gc"],
                json={"slot": "supervisor1", "version": 1})
    res = client.post(f"/api/v1/engagements/{engagement.id}/sign", headers=headers["gc"],
                      json={"slot": "supervisor1", "version": 2})
    assert res.status_code == 403
    body = res.get_json()
    assert body["code"] == "ERR_FORBIDDEN"
    assert body["details"]["reason"] == "already_signed"


def test_manual_approved_status_is_422(client, make_engagement, headers):
    engagement = make_engagement()
    res = client.post(f"/api/v1/engagements/{engagement.id}/status", headers=headers["nc"],
                      json={"status": "approved"})
    assert res.status_code == 422


def test_missing_record_is_404(client, headers):
    res = client.get("/api/v1/payments/4242", headers=headers["gc"])
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


@pytest.mark.parametrize("engagement_id", ["abc", "12.5", True])
def test_malformed_engagement_id_is_a_validation_error(client, budget, headers, engagement_id):
    res = client.post("/api/v1/payments", headers=headers["gc"], json={
        "engagement_id": engagement_id, "amount": 100, "description": "Acompte",
        "invoice_number": "FAC-11", "date": date.today().isoformat(),
    })
    assert res.status_code == 422
    assert res.get_json()["details"] == {"engagement_id": "invalid"}


def test_malformed_budget_line_id_is_a_validation_error(client, budget, headers):
    res = client.post("/api/v1/engagements", headers=headers["gc"],
                      json=_engagement_payload(budget, budget_line_id="ligne-1"))
    assert res.status_code == 422
    assert res.get_json()["details"] == {"budget_line_id": "invalid"}


def test_malformed_edit_version_is_a_validation_error(client, make_engagement, headers):
    engagement = make_engagement()
    res = client.put(f"/api/v1/engagements/{engagement.id}", headers=headers["gc"],
                     json={"description": "Nouveau libellé", "version": "v1"})
    assert res.status_code == 422
    assert res.get_json()["details"] == {"version": "invalid"}
