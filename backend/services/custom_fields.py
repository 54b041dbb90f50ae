"""
Team-scoped custom field schemas, stored values and dynamic forms.

Definitions, groups and forms need ``can_manage_templates`` on the team;
reading or writing values only needs membership.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.core.errors import BadRequestError, NotFoundError
from backend.custom_fields.conditions import evaluate_conditions
from backend.custom_fields.formula import evaluate_formula, referenced_fields
from backend.custom_fields.validation import check_rules, is_empty, validate_value
from backend.database import CustomFieldDefinition, CustomFieldGroup, CustomFieldValue, DynamicForm
from backend.domain.enums import FieldScope, Permission
from backend.domain.models import FieldState
from backend.services import teams

logger = logging.getLogger(__name__)

DEFINITION_FIELDS = (
    "label", "description", "group_id", "required", "unique", "order",
    "default_value", "placeholder", "help_text", "options", "validation",
    "conditions", "settings", "formula", "depends_on", "is_active",
)
GROUP_FIELDS = ("name", "description", "order", "collapsible", "collapsed")


def _scope(value: Any) -> str:
    return FieldScope(value).value


def _can_manage(db: Session, team_id: str, user_id: str) -> None:
    teams.require_permission(db, team_id, user_id, Permission.MANAGE_TEMPLATES)


def _next_order(db: Session, model, team_id: str, scope: str) -> int:
    current = (
        db.query(func.max(model.order))
        .filter(model.team_id == team_id, model.scope == scope)
        .scalar()
    )
    return (current or 0) + 1


def _get_field(db: Session, team_id: str, field_id: str) -> CustomFieldDefinition:
    field = db.get(CustomFieldDefinition, field_id)
    if field is None or field.team_id != team_id:
        raise NotFoundError("Field definition not found")
    return field


def _get_group(db: Session, team_id: str, group_id: str) -> CustomFieldGroup:
    group = db.get(CustomFieldGroup, group_id)
    if group is None or group.team_id != team_id:
        raise NotFoundError("Field group not found")
    return group


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------

def create_field(db: Session, team_id: str, user_id: str, data: Dict[str, Any]) -> CustomFieldDefinition:
    _can_manage(db, team_id, user_id)
    scope = _scope(data["scope"])
    duplicate = (
        db.query(CustomFieldDefinition.id)
        .filter(
            CustomFieldDefinition.team_id == team_id,
            CustomFieldDefinition.scope == scope,
            CustomFieldDefinition.name == data["name"],
        )
        .first()
    )
    if duplicate is not None:
        raise BadRequestError("Field with this name already exists")
    check_rules(data.get("validation"))
    if data.get("group_id"):
        _get_group(db, team_id, data["group_id"])

    order = data.get("order")
    field = CustomFieldDefinition(
        team_id=team_id,
        name=data["name"],
        type=getattr(data["type"], "value", data["type"]),
        scope=scope,
        order=order if order is not None else _next_order(db, CustomFieldDefinition, team_id, scope),
    )
    for name in DEFINITION_FIELDS:
        if name != "order" and data.get(name) is not None:
            setattr(field, name, data[name])
    if field.formula and not field.depends_on:
        field.depends_on = referenced_fields(field.formula)

    db.add(field)
    db.commit()
    logger.info("Custom field %s.%s created on team %s", scope, field.name, team_id)
    return field


def update_field(db: Session, team_id: str, field_id: str, user_id: str,
                 data: Dict[str, Any]) -> CustomFieldDefinition:
    _can_manage(db, team_id, user_id)
    field = _get_field(db, team_id, field_id)
    check_rules(data.get("validation"))
    if data.get("group_id"):
        _get_group(db, team_id, data["group_id"])
    for name in DEFINITION_FIELDS:
        if data.get(name) is not None:
            setattr(field, name, data[name])
    if data.get("formula") is not None and data.get("depends_on") is None:
        field.depends_on = referenced_fields(field.formula)
    db.commit()
    return field


def delete_field(db: Session, team_id: str, field_id: str, user_id: str) -> None:
    _can_manage(db, team_id, user_id)
    field = _get_field(db, team_id, field_id)
    db.query(CustomFieldValue).filter(CustomFieldValue.field_id == field.id).delete(synchronize_session=False)
    db.delete(field)
    db.commit()
    logger.info("Custom field %s deleted from team %s", field_id, team_id)


def list_fields(db: Session, team_id: str, user_id: str,
                scope: Optional[str] = None) -> List[CustomFieldDefinition]:
    teams.require_membership(db, team_id, user_id)
    q = db.query(CustomFieldDefinition).filter(
        CustomFieldDefinition.team_id == team_id,
        CustomFieldDefinition.is_active.is_(True),
    )
    if scope:
        q = q.filter(CustomFieldDefinition.scope == _scope(scope))
    # ungrouped fields sort first
    return q.order_by(
        CustomFieldDefinition.group_id.is_not(None),
        CustomFieldDefinition.group_id.asc(),
        CustomFieldDefinition.order.asc(),
    ).all()


def reorder_fields(db: Session, team_id: str, user_id: str, field_ids: List[str]) -> int:
    """Give each listed field its position as ``order``; ids from other teams are skipped."""
    _can_manage(db, team_id, user_id)
    moved = 0
    for position, field_id in enumerate(field_ids):
        field = db.get(CustomFieldDefinition, field_id)
        if field is None or field.team_id != team_id:
            continue
        field.order = position
        moved += 1
    db.commit()
    return moved


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------

def create_group(db: Session, team_id: str, user_id: str, data: Dict[str, Any]) -> CustomFieldGroup:
    _can_manage(db, team_id, user_id)
    scope = _scope(data["scope"])
    order = data.get("order")
    group = CustomFieldGroup(
        team_id=team_id,
        name=data["name"],
        description=data.get("description"),
        scope=scope,
        order=order if order is not None else _next_order(db, CustomFieldGroup, team_id, scope),
        collapsible=data.get("collapsible", True),
        collapsed=data.get("collapsed", False),
    )
    db.add(group)
    db.commit()
    return group


def update_group(db: Session, team_id: str, group_id: str, user_id: str,
                 data: Dict[str, Any]) -> CustomFieldGroup:
    _can_manage(db, team_id, user_id)
    group = _get_group(db, team_id, group_id)
    for name in GROUP_FIELDS:
        if data.get(name) is not None:
            setattr(group, name, data[name])
    db.commit()
    return group


def delete_group(db: Session, team_id: str, group_id: str, user_id: str) -> None:
    _can_manage(db, team_id, user_id)
    group = _get_group(db, team_id, group_id)
    (
        db.query(CustomFieldDefinition)
        .filter(CustomFieldDefinition.group_id == group.id)
        .update({CustomFieldDefinition.group_id: None}, synchronize_session=False)
    )
    db.delete(group)
    db.commit()


def list_groups(db: Session, team_id: str, user_id: str, scope: Optional[str] = None) -> List[CustomFieldGroup]:
    teams.require_membership(db, team_id, user_id)
    q = db.query(CustomFieldGroup).filter(CustomFieldGroup.team_id == team_id)
    if scope:
        q = q.filter(CustomFieldGroup.scope == _scope(scope))
    return q.order_by(CustomFieldGroup.order.asc()).all()


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------

def _check_unique(db: Session, field: CustomFieldDefinition, entity_id: str, value: Any) -> None:
    if not field.unique or is_empty(value):
        return
    others = (
        db.query(CustomFieldValue)
        .filter(CustomFieldValue.field_id == field.id, CustomFieldValue.entity_id != entity_id)
        .all()
    )
    if any(row.value == value for row in others):
        raise BadRequestError(f"{field.label} must be unique")


def _upsert(db: Session, field: CustomFieldDefinition, entity_id: str, scope: str, value: Any) -> CustomFieldValue:
    validate_value(field, value)
    _check_unique(db, field, entity_id, value)
    row = (
        db.query(CustomFieldValue)
        .filter(CustomFieldValue.field_id == field.id, CustomFieldValue.entity_id == entity_id)
        .first()
    )
    if row is None:
        row = CustomFieldValue(field_id=field.id, entity_id=entity_id, scope=scope, value=value)
        db.add(row)
    else:
        row.value = value
    return row


def set_value(db: Session, team_id: str, user_id: str, data: Dict[str, Any]) -> CustomFieldValue:
    teams.require_membership(db, team_id, user_id)
    field = _get_field(db, team_id, data["field_id"])
    row = _upsert(db, field, data["entity_id"], _scope(data.get("scope") or field.scope), data.get("value"))
    db.commit()
    return row


def set_values(db: Session, team_id: str, user_id: str, data: Dict[str, Any]) -> List[CustomFieldValue]:
    """Bulk upsert keyed by field name. Names with no definition are ignored."""
    teams.require_membership(db, team_id, user_id)
    scope = _scope(data["scope"])
    values = data.get("values") or {}
    fields = (
        db.query(CustomFieldDefinition)
        .filter(
            CustomFieldDefinition.team_id == team_id,
            CustomFieldDefinition.scope == scope,
            CustomFieldDefinition.name.in_(list(values)),
        )
        .all()
    )
    by_name = {f.name: f for f in fields}

    saved = []
    for name, value in values.items():
        field = by_name.get(name)
        if field is None:
            continue
        saved.append(_upsert(db, field, data["entity_id"], scope, value))
    db.commit()
    return saved


def get_values(db: Session, team_id: str, user_id: str, entity_id: str,
               scope: Optional[str] = None) -> Dict[str, Any]:
    teams.require_membership(db, team_id, user_id)
    q = (
        db.query(CustomFieldValue)
        .join(CustomFieldDefinition, CustomFieldValue.field_id == CustomFieldDefinition.id)
        .filter(CustomFieldDefinition.team_id == team_id, CustomFieldValue.entity_id == entity_id)
    )
    if scope:
        q = q.filter(CustomFieldValue.scope == _scope(scope))
    rows = q.all()
    return {
        "entity_id": entity_id,
        "values": {r.field_id: r.value for r in rows},
        "by_name": {r.field.name: r.value for r in rows},
    }


def delete_value(db: Session, team_id: str, field_id: str, entity_id: str, user_id: str) -> int:
    teams.require_membership(db, team_id, user_id)
    _get_field(db, team_id, field_id)
    removed = (
        db.query(CustomFieldValue)
        .filter(CustomFieldValue.field_id == field_id, CustomFieldValue.entity_id == entity_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return removed


# ---------------------------------------------------------------------------
# Conditional logic & calculated fields
# ---------------------------------------------------------------------------

def field_state(db: Session, team_id: str, user_id: str, field_id: str, values: Dict[str, Any]) -> FieldState:
    teams.require_membership(db, team_id, user_id)
    field = _get_field(db, team_id, field_id)
    return evaluate_conditions(field.conditions or [], values, required=field.required)


def calculated_value(db: Session, team_id: str, user_id: str, field_id: str, entity_id: str) -> Optional[float]:
    """Evaluate a formula field against the entity's stored dependent values."""
    teams.require_membership(db, team_id, user_id)
    field = _get_field(db, team_id, field_id)
    if not field.formula:
        raise BadRequestError(f"{field.label} is not a calculated field")

    names = field.depends_on or referenced_fields(field.formula)
    context: Dict[str, Any] = {}
    if names:
        rows = (
            db.query(CustomFieldDefinition.name, CustomFieldValue.value)
            .join(CustomFieldValue, CustomFieldValue.field_id == CustomFieldDefinition.id)
            .filter(
                CustomFieldDefinition.team_id == team_id,
                CustomFieldDefinition.scope == field.scope,
                CustomFieldDefinition.name.in_(names),
                CustomFieldValue.entity_id == entity_id,
            )
            .all()
        )
        context = {name: value for name, value in rows}
    return evaluate_formula(field.formula, context)


# ---------------------------------------------------------------------------
# Dynamic forms
# ---------------------------------------------------------------------------

def create_form(db: Session, team_id: str, user_id: str, data: Dict[str, Any]) -> DynamicForm:
    _can_manage(db, team_id, user_id)
    field_ids = list(dict.fromkeys(data.get("field_ids") or []))
    if field_ids:
        owned = {
            fid for (fid,) in db.query(CustomFieldDefinition.id)
            .filter(CustomFieldDefinition.team_id == team_id, CustomFieldDefinition.id.in_(field_ids))
            .all()
        }
        foreign = [fid for fid in field_ids if fid not in owned]
        if foreign:
            raise BadRequestError(f"Unknown fields for this team: {', '.join(foreign)}")
    form = DynamicForm(
        team_id=team_id,
        name=data["name"],
        description=data.get("description"),
        scope=_scope(data["scope"]),
        field_ids=field_ids,
        layout=data.get("layout"),
        settings=data.get("settings") or {},
    )
    db.add(form)
    db.commit()
    return form


def get_form(db: Session, team_id: str, form_id: str,
             user_id: str) -> Tuple[DynamicForm, List[CustomFieldDefinition]]:
    teams.require_membership(db, team_id, user_id)
    form = db.get(DynamicForm, form_id)
    if form is None or form.team_id != team_id:
        raise NotFoundError("Form not found")
    fields = []
    if form.field_ids:
        fields = (
            db.query(CustomFieldDefinition)
            .filter(
                CustomFieldDefinition.team_id == form.team_id,
                CustomFieldDefinition.id.in_(form.field_ids),
            )
            .order_by(CustomFieldDefinition.order.asc())
            .all()
        )
    return form, fields


def list_forms(db: Session, team_id: str, user_id: str, scope: Optional[str] = None) -> List[DynamicForm]:
    teams.require_membership(db, team_id, user_id)
    q = db.query(DynamicForm).filter(DynamicForm.team_id == team_id)
    if scope:
        q = q.filter(DynamicForm.scope == _scope(scope))
    return q.order_by(DynamicForm.created_at.desc()).all()
