"""
Work order template CRUD.

A template with ``site_id`` NULL is shared by every site of its tenant; a
site-bound template is visible only to callers in that site (or callers with
no site in context).
"""

import logging

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from workpro.core.exceptions import ConflictError, NotFoundError, ValidationError
from workpro.models import db
from workpro.models.work_order import PRIORITIES
from workpro.models.work_order_template import TEMPLATE_DEFAULT_KEYS, WorkOrderTemplate
from workpro.services.helpers.scoped_queries import get_scoped

logger = logging.getLogger(__name__)


def _validate_defaults(defaults: dict) -> dict:
    unknown = sorted(set(defaults) - TEMPLATE_DEFAULT_KEYS)
    if unknown:
        raise ValidationError(
            "Unknown template default(s)",
            details={key: "Unknown field" for key in unknown},
        )
    priority = defaults.get("priority")
    if priority is not None and priority not in PRIORITIES:
        raise ValidationError(f"Invalid priority: '{priority}'. Allowed: {sorted(PRIORITIES)}")
    for key in ("sla_response_minutes", "sla_resolve_minutes"):
        value = defaults.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value <= 0):
            raise ValidationError(f"{key} must be a positive integer")
    for key in ("required_permit_types", "approval_steps", "sla_escalations"):
        if key in defaults and not isinstance(defaults[key], list):
            raise ValidationError(f"{key} must be a list")
    return defaults


def _visible(template, ctx) -> bool:
    return template.site_id is None or ctx.site_id is None or template.site_id == ctx.site_id


def get_template(ctx, template_id: int) -> WorkOrderTemplate:
    template = get_scoped(WorkOrderTemplate, template_id, tenant_id=ctx.tenant_id)
    if not _visible(template, ctx):
        raise NotFoundError(resource="WorkOrderTemplate", resource_id=template_id)
    return template


def list_templates(ctx) -> list[WorkOrderTemplate]:
    stmt = select(WorkOrderTemplate).where(WorkOrderTemplate.tenant_id == ctx.tenant_id)
    if ctx.site_id is not None:
        stmt = stmt.where(or_(WorkOrderTemplate.site_id.is_(None),
                              WorkOrderTemplate.site_id == ctx.site_id))
    stmt = stmt.order_by(WorkOrderTemplate.name)
    return list(db.session.execute(stmt).scalars())


def _commit_unique(name: str) -> None:
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(resource="WorkOrderTemplate", field="name", value=name)


def create_template(ctx, req) -> WorkOrderTemplate:
    if not req.name:
        raise ValidationError("name is required", details={"name": "Field is required"})
    template = WorkOrderTemplate(
        tenant_id=ctx.tenant_id,
        site_id=req.site_id if req.site_id is not None else ctx.site_id,
        name=req.name,
        description=req.description or "",
        defaults=_validate_defaults(dict(req.defaults or {})),
        created_by=ctx.user_id,
    )
    db.session.add(template)
    _commit_unique(req.name)
    logger.info("Work order template created",
                extra={"tenant_id": ctx.tenant_id, "template_id": template.id})
    return template


def update_template(ctx, template_id: int, req) -> WorkOrderTemplate:
    template = get_template(ctx, template_id)
    changes = req.changes()
    if "defaults" in changes:
        changes["defaults"] = _validate_defaults(dict(changes["defaults"]))
    if "name" in changes and not changes["name"]:
        raise ValidationError("name must not be empty", details={"name": "Field is required"})
    for key, value in changes.items():
        setattr(template, key, value)
    _commit_unique(template.name)
    return template


def delete_template(ctx, template_id: int) -> None:
    template = get_template(ctx, template_id)
    db.session.delete(template)
    db.session.commit()
    logger.info("Work order template deleted",
                extra={"tenant_id": ctx.tenant_id, "template_id": template_id})
