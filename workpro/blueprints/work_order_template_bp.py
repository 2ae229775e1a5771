"""
Work Order Template Blueprint.

Routes:
  GET    /work-orders/templates          – list
  POST   /work-orders/templates          – create
  GET    /work-orders/templates/<id>     – detail
  PUT    /work-orders/templates/<id>     – update
  DELETE /work-orders/templates/<id>     – delete
"""

from flask import Blueprint

from workpro.blueprints import current_ctx, json_body
from workpro.services import work_order_template_service as templates
from workpro.services.contracts import TemplateCreateRequest, TemplateUpdateRequest, parse
from workpro.utils.errors import api_ok

work_order_template_bp = Blueprint(
    "work_order_template_bp", __name__, url_prefix="/api/v1/work-orders/templates",
)


@work_order_template_bp.route("", methods=["GET"])
def list_templates():
    return api_ok([t.to_dict() for t in templates.list_templates(current_ctx())])


@work_order_template_bp.route("", methods=["POST"])
def create_template():
    req = parse(TemplateCreateRequest, json_body())
    return api_ok(templates.create_template(current_ctx(), req).to_dict(), status=201)


@work_order_template_bp.route("/<int:template_id>", methods=["GET"])
def get_template(template_id):
    return api_ok(templates.get_template(current_ctx(), template_id).to_dict())


@work_order_template_bp.route("/<int:template_id>", methods=["PUT"])
def update_template(template_id):
    req = parse(TemplateUpdateRequest, json_body())
    return api_ok(templates.update_template(current_ctx(), template_id, req).to_dict())


@work_order_template_bp.route("/<int:template_id>", methods=["DELETE"])
def delete_template(template_id):
    templates.delete_template(current_ctx(), template_id)
    return "", 204
