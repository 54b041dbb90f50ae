"""
Team Endpoints
POST   /api/teams                                  - create (caller becomes owner)
GET    /api/teams                                  - teams the caller belongs to
GET    /api/teams/{id}                             - one team with caller's role
PATCH  /api/teams/{id}                             - rename / settings
DELETE /api/teams/{id}                             - owner only
GET    /api/teams/{id}/members                     - member list
POST   /api/teams/{id}/members                     - invite by email
PATCH  /api/teams/{id}/members/{member_id}/role
PATCH  /api/teams/{id}/members/{member_id}/permissions
DELETE /api/teams/{id}/members/{member_id}
POST   /api/teams/{id}/leave
POST   /api/teams/{id}/transfer-ownership
GET    /api/teams/{id}/stats
"""

import asyncio

from fastapi import APIRouter, Request

from backend.api.schemas import (
    InviteMemberRequest,
    TeamCreate,
    TeamUpdate,
    TransferOwnershipRequest,
    UpdatePermissionsRequest,
    UpdateRoleRequest,
)
from backend.auth import require_user
from backend.database import get_db
from backend.services import teams as team_service
from backend.services.serializers import member_dict, team_dict

router = APIRouter(prefix="/api/teams", tags=["teams"])


@router.post("", status_code=201)
async def create_team(body: TeamCreate, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            team = team_service.create_team(db, user.user_id, body.name, body.settings)
            return team_dict(team, team_service.get_membership(db, team.id, user.user_id))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("")
async def list_teams(request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return {"teams": [team_dict(t, m) for t, m in team_service.list_teams(db, user.user_id)]}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/{team_id}")
async def get_team(team_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            team, member = team_service.get_team(db, team_id, user.user_id)
            return team_dict(team, member)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.patch("/{team_id}")
async def update_team(team_id: str, body: TeamUpdate, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            team = team_service.update_team(db, team_id, user.user_id, body.name, body.settings)
            return team_dict(team)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/{team_id}")
async def delete_team(team_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            team_service.delete_team(db, team_id, user.user_id)
            return {"success": True}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/{team_id}/members")
async def list_members(team_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return {"members": [member_dict(m) for m in team_service.list_members(db, team_id, user.user_id)]}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/{team_id}/members", status_code=201)
async def invite_member(team_id: str, body: InviteMemberRequest, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return member_dict(team_service.invite_member(db, team_id, user.user_id, body.email, body.role))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.patch("/{team_id}/members/{member_id}/role")
async def update_role(team_id: str, member_id: str, body: UpdateRoleRequest, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            member = team_service.update_member_role(db, team_id, member_id, user.user_id, body.role)
            return member_dict(member)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.patch("/{team_id}/members/{member_id}/permissions")
async def update_permissions(team_id: str, member_id: str, body: UpdatePermissionsRequest, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            member = team_service.update_member_permissions(
                db, team_id, member_id, user.user_id, body.permissions,
            )
            return member_dict(member)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/{team_id}/members/{member_id}")
async def remove_member(team_id: str, member_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            team_service.remove_member(db, team_id, member_id, user.user_id)
            return {"success": True}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/{team_id}/leave")
async def leave_team(team_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            team_service.leave_team(db, team_id, user.user_id)
            return {"success": True}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/{team_id}/transfer-ownership")
async def transfer_ownership(team_id: str, body: TransferOwnershipRequest, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            team = team_service.transfer_ownership(db, team_id, user.user_id, body.new_owner_id)
            return team_dict(team, team_service.get_membership(db, team_id, user.user_id))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/{team_id}/stats")
async def team_stats(team_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return team_service.team_stats(db, team_id, user.user_id).to_dict()
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
