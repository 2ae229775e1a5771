"""
Work Order Parts Blueprint — reservation ledger.

Routes:
  GET    /work-orders/<id>/parts                  – active line items
  GET    /work-orders/<id>/parts/movements        – movement history
  POST   /work-orders/<id>/parts/reserve          – { stock_id, quantity, unit_cost? }
  POST   /work-orders/<id>/parts/unreserve        – { stock_id, quantity }
  POST   /work-orders/<id>/parts/issue            – { stock_id, quantity }
  POST   /work-orders/<id>/parts/return           – { stock_id, quantity }
  DELETE /work-orders/<id>/parts/<line_item_id>   – soft delete, releases reservation
"""

from flask import Blueprint

from workpro.blueprints import current_ctx, json_body
from workpro.services import parts_ledger
from workpro.services.contracts import PartsQuantityRequest, PartsReserveRequest, parse
from workpro.utils.errors import api_ok

work_order_parts_bp = Blueprint(
    "work_order_parts_bp", __name__, url_prefix="/api/v1/work-orders/<int:wo_id>/parts",
)


def _ledger_payload(line):
    work_order = line.work_order
    return {
        "line_item": line.to_dict(),
        "stock": line.stock.to_dict(),
        "work_order": {
            "id": work_order.id,
            "parts_cost_total": float(work_order.parts_cost_total or 0),
            "parts_cost": float(work_order.parts_cost or 0),
            "total_cost": float(work_order.total_cost or 0),
            "version": work_order.version,
        },
    }


@work_order_parts_bp.route("", methods=["GET"])
def list_line_items(wo_id):
    return api_ok([item.to_dict() for item in parts_ledger.list_line_items(current_ctx(), wo_id)])


@work_order_parts_bp.route("/movements", methods=["GET"])
def list_movements(wo_id):
    return api_ok([m.to_dict() for m in parts_ledger.list_movements(current_ctx(), wo_id)])


@work_order_parts_bp.route("/reserve", methods=["POST"])
def reserve(wo_id):
    req = parse(PartsReserveRequest, json_body())
    line = parts_ledger.reserve(current_ctx(), wo_id, req.stock_id, req.quantity,
                                unit_cost=req.unit_cost)
    return api_ok(_ledger_payload(line))


@work_order_parts_bp.route("/unreserve", methods=["POST"])
def unreserve(wo_id):
    req = parse(PartsQuantityRequest, json_body())
    line = parts_ledger.unreserve(current_ctx(), wo_id, req.stock_id, req.quantity)
    return api_ok(_ledger_payload(line))


@work_order_parts_bp.route("/issue", methods=["POST"])
def issue(wo_id):
    req = parse(PartsQuantityRequest, json_body())
    line = parts_ledger.issue(current_ctx(), wo_id, req.stock_id, req.quantity)
    return api_ok(_ledger_payload(line))


@work_order_parts_bp.route("/return", methods=["POST"])
def return_parts(wo_id):
    req = parse(PartsQuantityRequest, json_body())
    line = parts_ledger.return_parts(current_ctx(), wo_id, req.stock_id, req.quantity)
    return api_ok(_ledger_payload(line))


@work_order_parts_bp.route("/<int:line_item_id>", methods=["DELETE"])
def delete_line_item(wo_id, line_item_id):
    parts_ledger.delete_line_item(current_ctx(), wo_id, line_item_id)
    return "", 204
