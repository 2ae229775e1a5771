"""
Work Order Blueprint — intake, lifecycle, approvals, SLA and offline sync.

Routes:
  GET    /work-orders                      – list (status, limit, offset)
  POST   /work-orders                      – create (optionally from template)
  GET    /work-orders/<id>                 – detail
  PATCH  /work-orders/<id>/status          – status transition (safety gated)
  POST   /work-orders/<id>/approval        – approve / reject current step
  POST   /work-orders/<id>/sla-ack         – stamp response / resolution
  POST   /work-orders/<id>/sync            – replay an offline edit
  GET    /work-orders/<id>/timeline        – audit trail
"""

from flask import Blueprint, request

from workpro.blueprints import current_ctx, json_body, paginate_stmt
from workpro.services import work_order_lifecycle as lifecycle
from workpro.services.contracts import (
    ApprovalRequest,
    SlaAckRequest,
    StatusUpdateRequest,
    SyncRequest,
    WorkOrderCreateRequest,
    parse,
)
from workpro.services.notification import dispatch_notifications
from workpro.utils.errors import E, api_error, api_ok

work_order_bp = Blueprint("work_order_bp", __name__, url_prefix="/api/v1/work-orders")


def _respond(result, status=200):
    dispatch_notifications(result.notifications)
    return api_ok(result.work_order.to_dict(), status=status)


@work_order_bp.route("", methods=["GET"])
def list_work_orders():
    stmt = lifecycle.list_work_orders(current_ctx(), status=request.args.get("status") or None)
    items, total = paginate_stmt(stmt)
    return api_ok({"items": [wo.to_dict(include_children=False) for wo in items], "total": total})


@work_order_bp.route("", methods=["POST"])
def create_work_order():
    req = parse(WorkOrderCreateRequest, json_body())
    return _respond(lifecycle.create_work_order(current_ctx(), req), status=201)


@work_order_bp.route("/<int:wo_id>", methods=["GET"])
def get_work_order(wo_id):
    return api_ok(lifecycle.get_work_order(current_ctx(), wo_id).to_dict())


@work_order_bp.route("/<int:wo_id>/status", methods=["PATCH"])
def update_status(wo_id):
    """Body: { status, note? }"""
    req = parse(StatusUpdateRequest, json_body())
    return _respond(lifecycle.update_status(current_ctx(), wo_id, req.status, note=req.note))


@work_order_bp.route("/<int:wo_id>/approval", methods=["POST"])
def advance_approval(wo_id):
    """Body: { approved, note?, approver_id? }"""
    req = parse(ApprovalRequest, json_body())
    result = lifecycle.advance_approval(
        current_ctx(), wo_id, req.approved, note=req.note, approver_id=req.approver_id,
    )
    return _respond(result)


@work_order_bp.route("/<int:wo_id>/sla-ack", methods=["POST"])
def acknowledge_sla(wo_id):
    """Body: { kind: response|resolve, at? }"""
    req = parse(SlaAckRequest, json_body())
    return _respond(lifecycle.acknowledge_sla(current_ctx(), wo_id, req.kind, at=req.at))


@work_order_bp.route("/<int:wo_id>/sync", methods=["POST"])
def sync_offline_change(wo_id):
    """Body: { version, payload, client_updated_at? }

    409 with the merged view and conflicting fields when the edit is stale.
    """
    req = parse(SyncRequest, json_body())
    result = lifecycle.sync_offline_change(
        current_ctx(), wo_id, req.version, req.payload, client_updated_at=req.client_updated_at,
    )
    if not result.applied:
        return api_error(
            E.SYNC_CONFLICT,
            "Offline change conflicts with newer server data",
            data=result.to_dict(),
        )
    return api_ok(result.to_dict())


@work_order_bp.route("/<int:wo_id>/timeline", methods=["GET"])
def get_timeline(wo_id):
    work_order = lifecycle.get_work_order(current_ctx(), wo_id)
    return api_ok([entry.to_dict() for entry in work_order.timeline])
