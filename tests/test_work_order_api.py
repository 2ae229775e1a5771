"""
Tests: work order HTTP API.

Covers the response envelope, tenant context headers, error status mapping,
the parts ledger endpoints, offline sync conflicts and health probes.
"""

import pytest

from workpro.models import db as _db
from workpro.models.notification import Notification

pytestmark = pytest.mark.integration

WO = "/api/v1/work-orders"


def _create(client, h, **body):
    res = client.post(WO, json={"title": "Chiller service", **body}, headers=h)
    assert res.status_code == 201, res.get_json()
    return res.get_json()["data"]


# ═════════════════════════════════════════════════════════════════════════════
# 1. CONTEXT + ENVELOPE
# ═════════════════════════════════════════════════════════════════════════════


class TestContext:

    def test_missing_tenant_header_is_403(self, client):
        res = client.get(WO)
        assert res.status_code == 403
        assert res.get_json() == {"success": False, "message": "Tenant context required",
                                  "code": "ERR_FORBIDDEN"}

    def test_unknown_tenant_is_403(self, client):
        assert client.get(WO, headers={"X-Tenant-Id": "999"}).status_code == 403

    def test_inactive_tenant_is_403(self, client, tenant):
        tenant.is_active = False
        _db.session.commit()
        assert client.get(WO, headers={"X-Tenant-Id": str(tenant.id)}).status_code == 403

    def test_site_of_other_tenant_is_403(self, client, ctx, other_ctx):
        h = {"X-Tenant-Id": str(ctx.tenant_id), "X-Site-Id": str(other_ctx.site_id)}
        assert client.get(WO, headers=h).status_code == 403

    def test_response_headers(self, client, ctx, headers):
        res = client.get(WO, headers=headers(ctx))
        assert res.status_code == 200
        assert "X-Request-ID" in res.headers
        assert "X-Request-Duration-Ms" in res.headers


class TestEnvelope:

    def test_create_and_get(self, client, ctx, headers):
        h = headers(ctx)
        created = _create(client, h, assigned_to="tech-3")
        res = client.get(f"{WO}/{created['id']}", headers=h)
        body = res.get_json()
        assert body["success"] is True
        assert body["data"]["status"] == "assigned"
        assert body["data"]["version"] == 1

    def test_assignment_notification_persisted(self, client, ctx, headers):
        _create(client, headers(ctx), assigned_to="tech-3")
        assert [n.recipient for n in Notification.query.all()] == ["tech-3"]

    def test_list_filters_and_paginates(self, client, ctx, headers):
        h = headers(ctx)
        _create(client, h, title="A")
        _create(client, h, title="B", assigned_to="tech-1")
        res = client.get(f"{WO}?status=assigned", headers=h)
        data = res.get_json()["data"]
        assert data["total"] == 1
        assert [w["title"] for w in data["items"]] == ["B"]

        res = client.get(f"{WO}?limit=1", headers=h)
        assert len(res.get_json()["data"]["items"]) == 1
        assert res.get_json()["data"]["total"] == 2

    def test_other_tenant_gets_404(self, client, ctx, other_ctx, headers):
        created = _create(client, headers(ctx))
        res = client.get(f"{WO}/{created['id']}", headers=headers(other_ctx))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_validation_error_details(self, client, ctx, headers):
        res = client.post(WO, json={"titel": "typo"}, headers=headers(ctx))
        body = res.get_json()
        assert res.status_code == 400
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["details"] == {"titel": "Unknown field", "title": "Field is required"}

    def test_non_json_body_rejected(self, client, ctx, headers):
        res = client.post(WO, data="title=x", headers=headers(ctx),
                          content_type="text/plain")
        assert res.status_code == 415

    def test_unknown_route_uses_envelope(self, client, ctx, headers):
        res = client.get("/api/v1/nowhere", headers=headers(ctx))
        assert res.status_code == 404
        assert res.get_json()["success"] is False


# ═════════════════════════════════════════════════════════════════════════════
# 2. LIFECYCLE ENDPOINTS
# ═════════════════════════════════════════════════════════════════════════════


class TestLifecycleEndpoints:

    def test_status_gate_returns_409_with_missing_permits(self, client, ctx, headers):
        h = headers(ctx)
        wo = _create(client, h, assigned_to="tech-3", required_permit_types=["confined_space"])
        res = client.patch(f"{WO}/{wo['id']}/status", json={"status": "in_progress"}, headers=h)
        body = res.get_json()
        assert res.status_code == 409
        assert body["code"] == "ERR_PERMITS_REQUIRED"
        assert body["details"] == {"missing_permits": ["confined_space"]}

    def test_invalid_transition_is_409(self, client, ctx, headers):
        h = headers(ctx)
        wo = _create(client, h)
        res = client.patch(f"{WO}/{wo['id']}/status", json={"status": "completed"}, headers=h)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_approval_then_completion(self, client, ctx, headers):
        h = headers(ctx)
        wo = _create(client, h, assigned_to="tech-3",
                     approval_steps=[{"name": "Supervisor"}, {"name": "Manager", "approver": "mgr-4"}])
        wid = wo["id"]
        client.patch(f"{WO}/{wid}/status", json={"status": "in_progress"}, headers=h)

        res = client.patch(f"{WO}/{wid}/status", json={"status": "completed"}, headers=h)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_APPROVAL_PENDING"

        res = client.post(f"{WO}/{wid}/approval", json={"approved": True}, headers=h)
        assert res.get_json()["data"]["current_approval_step"] == 2
        assert Notification.query.filter_by(recipient="mgr-4").count() == 1

        client.post(f"{WO}/{wid}/approval", json={"approved": True}, headers=h)
        res = client.patch(f"{WO}/{wid}/status", json={"status": "completed"}, headers=h)
        assert res.status_code == 200
        assert res.get_json()["data"]["status"] == "completed"

    def test_no_pending_approval_is_400(self, client, ctx, headers):
        h = headers(ctx)
        wo = _create(client, h, approval_steps=["Only"])
        client.post(f"{WO}/{wo['id']}/approval", json={"approved": False}, headers=h)
        res = client.post(f"{WO}/{wo['id']}/approval", json={"approved": True}, headers=h)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_NO_PENDING_APPROVAL"

    def test_sla_ack_and_timeline(self, client, ctx, headers):
        h = headers(ctx)
        wo = _create(client, h, sla_response_minutes=15)
        res = client.post(f"{WO}/{wo['id']}/sla-ack",
                          json={"kind": "response", "at": "2026-04-01T08:00:00Z"}, headers=h)
        assert res.get_json()["data"]["sla_responded_at"].startswith("2026-04-01T08:00:00")

        labels = [e["label"] for e in client.get(f"{WO}/{wo['id']}/timeline", headers=h)
                  .get_json()["data"]]
        assert labels[0] == "Work order created"
        assert "Response acknowledged" in labels

    def test_sync_conflict_returns_409_with_merged_view(self, client, ctx, headers):
        h = headers(ctx)
        wo = _create(client, h, priority="low")
        client.patch(f"{WO}/{wo['id']}/status", json={"status": "assigned"}, headers=h)

        res = client.post(f"{WO}/{wo['id']}/sync",
                          json={"version": 1, "payload": {"priority": "high"}}, headers=h)
        body = res.get_json()
        assert res.status_code == 409
        assert body["code"] == "ERR_SYNC_CONFLICT"
        assert body["data"]["conflicts"] == ["priority"]
        assert body["data"]["merged"]["priority"] == "high"
        assert body["data"]["work_order"]["priority"] == "low"

    def test_sync_applies_current_version(self, client, ctx, headers):
        h = headers(ctx)
        wo = _create(client, h)
        res = client.post(f"{WO}/{wo['id']}/sync",
                          json={"version": 1, "payload": {"title": "Chiller service (rev)"}},
                          headers=h)
        assert res.status_code == 200
        assert res.get_json()["data"]["applied"] is True
        assert res.get_json()["data"]["work_order"]["version"] == 2


# ═════════════════════════════════════════════════════════════════════════════
# 3. PARTS ENDPOINTS
# ═════════════════════════════════════════════════════════════════════════════


class TestPartsEndpoints:

    def test_ledger_flow(self, client, ctx, headers, make_stock):
        h = headers(ctx)
        stock = make_stock(ctx, on_hand=10, unit_cost=5.0)
        wid = _create(client, h)["id"]
        base = f"{WO}/{wid}/parts"

        res = client.post(f"{base}/reserve", json={"stock_id": stock.id, "quantity": 3}, headers=h)
        data = res.get_json()["data"]
        assert res.status_code == 200
        assert (data["stock"]["on_hand"], data["stock"]["reserved"]) == (7, 3)

        client.post(f"{base}/issue", json={"stock_id": stock.id, "quantity": 2}, headers=h)
        res = client.post(f"{base}/return", json={"stock_id": stock.id, "quantity": 1}, headers=h)
        data = res.get_json()["data"]
        assert (data["stock"]["on_hand"], data["stock"]["reserved"]) == (8, 1)
        assert data["work_order"]["parts_cost_total"] == 5.0
        assert data["line_item"]["qty_issued"] == 2

        moves = client.get(f"{base}/movements", headers=h).get_json()["data"]
        assert [m["type"] for m in moves] == ["reserve", "issue", "return"]

    def test_insufficient_stock_is_400(self, client, ctx, headers, make_stock):
        h = headers(ctx)
        stock = make_stock(ctx, on_hand=1)
        wid = _create(client, h)["id"]
        res = client.post(f"{WO}/{wid}/parts/reserve",
                          json={"stock_id": stock.id, "quantity": 2}, headers=h)
        body = res.get_json()
        assert res.status_code == 400
        assert body["code"] == "ERR_INSUFFICIENT_STOCK"
        assert body["message"] == "Insufficient on-hand quantity"

    def test_foreign_stock_is_scope_violation(self, client, ctx, other_ctx, headers, make_stock):
        foreign = make_stock(other_ctx)
        wid = _create(client, headers(ctx))["id"]
        res = client.post(f"{WO}/{wid}/parts/reserve",
                          json={"stock_id": foreign.id, "quantity": 1}, headers=headers(ctx))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_SCOPE_VIOLATION"

    def test_delete_line_item(self, client, ctx, headers, make_stock):
        h = headers(ctx)
        stock = make_stock(ctx, on_hand=10)
        wid = _create(client, h)["id"]
        line = client.post(f"{WO}/{wid}/parts/reserve",
                           json={"stock_id": stock.id, "quantity": 2},
                           headers=h).get_json()["data"]["line_item"]

        assert client.delete(f"{WO}/{wid}/parts/{line['id']}", headers=h).status_code == 204
        assert client.get(f"{WO}/{wid}/parts", headers=h).get_json()["data"] == []
        assert client.delete(f"{WO}/{wid}/parts/{line['id']}", headers=h).status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# 4. HEALTH
# ═════════════════════════════════════════════════════════════════════════════


class TestHealth:

    def test_ready_needs_no_tenant(self, client):
        assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}

    def test_live_reports_dependencies(self, client):
        res = client.get("/api/v1/health/live")
        checks = res.get_json()["checks"]
        assert res.status_code == 200
        assert checks["database"]["status"] == "ok"
        assert checks["redis"]["status"] == "skipped"
        assert checks["sla_monitor"]["status"] == "stopped"
