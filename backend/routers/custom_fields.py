"""
Custom Field Endpoints (all under /api/teams/{team_id}/custom-fields)

Definitions:  GET/POST /definitions, PATCH/DELETE /definitions/{id},
              POST /definitions/reorder
Groups:       GET/POST /groups, PATCH/DELETE /groups/{id}
Values:       POST /values, POST /values/bulk, GET /values/{entity_id},
              DELETE /values/{field_id}/{entity_id}
Forms:        GET/POST /forms, GET /forms/{id}
Logic:        POST /conditions/evaluate, GET /calculated/{field_id}/{entity_id}
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Query, Request

from backend.api.schemas import (
    DynamicFormCreate,
    EvaluateConditionsRequest,
    FieldDefinitionCreate,
    FieldDefinitionUpdate,
    FieldGroupCreate,
    FieldGroupUpdate,
    ReorderFieldsRequest,
    SetFieldValueRequest,
    SetFieldValuesRequest,
)
from backend.auth import require_user
from backend.database import get_db, row_to_dict
from backend.domain.enums import FieldScope
from backend.services import custom_fields as field_service
from backend.services.serializers import field_dict, group_dict, rows

router = APIRouter(prefix="/api/teams/{team_id}/custom-fields", tags=["custom-fields"])


def _scope(scope: Optional[FieldScope]) -> Optional[str]:
    return scope.value if scope else None


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------

@router.get("/definitions")
async def list_definitions(team_id: str, request: Request, scope: Optional[FieldScope] = Query(default=None)):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            fields = field_service.list_fields(db, team_id, user.user_id, _scope(scope))
            return {"fields": [field_dict(f) for f in fields]}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/definitions", status_code=201)
async def create_definition(team_id: str, body: FieldDefinitionCreate, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return field_dict(field_service.create_field(db, team_id, user.user_id, body.model_dump()))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/definitions/reorder")
async def reorder_definitions(team_id: str, body: ReorderFieldsRequest, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            moved = field_service.reorder_fields(db, team_id, user.user_id, body.field_ids)
            return {"success": True, "reordered": moved}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.patch("/definitions/{field_id}")
async def update_definition(team_id: str, field_id: str, body: FieldDefinitionUpdate, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            data = body.model_dump(exclude_unset=True)
            return field_dict(field_service.update_field(db, team_id, field_id, user.user_id, data))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/definitions/{field_id}")
async def delete_definition(team_id: str, field_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            field_service.delete_field(db, team_id, field_id, user.user_id)
            return {"success": True}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------

@router.get("/groups")
async def list_groups(team_id: str, request: Request, scope: Optional[FieldScope] = Query(default=None)):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            groups = field_service.list_groups(db, team_id, user.user_id, _scope(scope))
            return {"groups": [group_dict(g) for g in groups]}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/groups", status_code=201)
async def create_group(team_id: str, body: FieldGroupCreate, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return group_dict(field_service.create_group(db, team_id, user.user_id, body.model_dump()))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.patch("/groups/{group_id}")
async def update_group(team_id: str, group_id: str, body: FieldGroupUpdate, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            data = body.model_dump(exclude_unset=True)
            return group_dict(field_service.update_group(db, team_id, group_id, user.user_id, data))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/groups/{group_id}")
async def delete_group(team_id: str, group_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            field_service.delete_group(db, team_id, group_id, user.user_id)
            return {"success": True}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------

@router.post("/values")
async def set_value(team_id: str, body: SetFieldValueRequest, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return row_to_dict(field_service.set_value(db, team_id, user.user_id, body.model_dump()))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/values/bulk")
async def set_values(team_id: str, body: SetFieldValuesRequest, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            saved = field_service.set_values(db, team_id, user.user_id, body.model_dump())
            return {"values": rows(saved)}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/values/{entity_id}")
async def get_values(team_id: str, entity_id: str, request: Request,
                     scope: Optional[FieldScope] = Query(default=None)):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return field_service.get_values(db, team_id, user.user_id, entity_id, _scope(scope))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/values/{field_id}/{entity_id}")
async def delete_value(team_id: str, field_id: str, entity_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            removed = field_service.delete_value(db, team_id, field_id, entity_id, user.user_id)
            return {"success": True, "deleted": removed}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


# ---------------------------------------------------------------------------
# Forms
# ---------------------------------------------------------------------------

@router.get("/forms")
async def list_forms(team_id: str, request: Request, scope: Optional[FieldScope] = Query(default=None)):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return {"forms": rows(field_service.list_forms(db, team_id, user.user_id, _scope(scope)))}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/forms", status_code=201)
async def create_form(team_id: str, body: DynamicFormCreate, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return row_to_dict(field_service.create_form(db, team_id, user.user_id, body.model_dump()))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/forms/{form_id}")
async def get_form(team_id: str, form_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            form, fields = field_service.get_form(db, team_id, form_id, user.user_id)
            out = row_to_dict(form)
            out["fields"] = [field_dict(f) for f in fields]
            return out
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


# ---------------------------------------------------------------------------
# Conditional logic / calculated fields
# ---------------------------------------------------------------------------

@router.post("/conditions/evaluate")
async def evaluate_conditions(team_id: str, body: EvaluateConditionsRequest, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            state = field_service.field_state(db, team_id, user.user_id, body.field_id, body.values)
            return state.to_dict()
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/calculated/{field_id}/{entity_id}")
async def calculated_value(team_id: str, field_id: str, entity_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            value = field_service.calculated_value(db, team_id, user.user_id, field_id, entity_id)
            return {"field_id": field_id, "entity_id": entity_id, "value": value}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
