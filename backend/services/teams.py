"""
Teams, memberships and role-based permissions.

A member's ``permissions`` dict starts as the role default and can be
edited per member afterwards; checks always read the stored dict.
"""

from __future__ import annotations

import logging
import re
import secrets
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from backend.core.constants import TEAM_SLUG_BYTES
from backend.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from backend.core.utils import round_cents
from backend.database import Team, TeamMember, get_user_by_email
from backend.domain.enums import Permission, TeamRole
from backend.domain.models import TeamStats

logger = logging.getLogger(__name__)

_VALID_PERMISSIONS = {p.value for p in Permission}


def _slugify(name: str) -> str:
    base = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:20] or "team"
    return f"{base}-{secrets.token_hex(TEAM_SLUG_BYTES // 2)}"


# ---------------------------------------------------------------------------
# Membership checks
# ---------------------------------------------------------------------------

def get_membership(db: Session, team_id: str, user_id: str) -> Optional[TeamMember]:
    return (
        db.query(TeamMember)
        .filter(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
        .first()
    )


def require_membership(db: Session, team_id: str, user_id: str) -> TeamMember:
    member = get_membership(db, team_id, user_id)
    if member is None:
        raise ForbiddenError("Not a member of this team")
    return member


def require_permission(db: Session, team_id: str, user_id: str, permission: Permission) -> TeamMember:
    member = require_membership(db, team_id, user_id)
    if not (member.permissions or {}).get(Permission(permission).value):
        raise ForbiddenError(f"Missing permission: {Permission(permission).value}")
    return member


def check_permission(db: Session, team_id: str, user_id: str, permission: Permission) -> bool:
    member = get_membership(db, team_id, user_id)
    return bool(member and (member.permissions or {}).get(Permission(permission).value))


def _get_team(db: Session, team_id: str) -> Team:
    team = db.get(Team, team_id)
    if team is None:
        raise NotFoundError("Team not found")
    return team


def _get_member(db: Session, team_id: str, member_id: str) -> TeamMember:
    member = db.get(TeamMember, member_id)
    if member is None or member.team_id != team_id:
        raise NotFoundError("Member not found")
    return member


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------

def create_team(db: Session, owner_id: str, name: str, settings: Optional[Dict[str, Any]] = None) -> Team:
    team = Team(name=name, slug=_slugify(name), owner_id=owner_id, settings=settings or {})
    db.add(team)
    db.flush()
    db.add(TeamMember(
        team_id=team.id,
        user_id=owner_id,
        role=TeamRole.OWNER.value,
        permissions=TeamRole.OWNER.default_permissions,
    ))
    db.commit()
    db.refresh(team)
    logger.info("Team %s created by %s", team.id, owner_id)
    return team


def list_teams(db: Session, user_id: str) -> List[Tuple[Team, TeamMember]]:
    memberships = (
        db.query(TeamMember)
        .filter(TeamMember.user_id == user_id)
        .order_by(TeamMember.joined_at.asc())
        .all()
    )
    return [(m.team, m) for m in memberships]


def get_team(db: Session, team_id: str, user_id: str) -> Tuple[Team, TeamMember]:
    team = _get_team(db, team_id)
    return team, require_membership(db, team_id, user_id)


def update_team(db: Session, team_id: str, user_id: str,
                name: Optional[str] = None, settings: Optional[Dict[str, Any]] = None) -> Team:
    require_permission(db, team_id, user_id, Permission.MANAGE_TEAM)
    team = _get_team(db, team_id)
    if name is not None:
        team.name = name
    if settings is not None:
        team.settings = settings
    db.commit()
    return team


def delete_team(db: Session, team_id: str, user_id: str) -> None:
    team = _get_team(db, team_id)
    if team.owner_id != user_id:
        raise ForbiddenError("Only the owner can delete the team")
    db.delete(team)
    db.commit()
    logger.info("Team %s deleted", team_id)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

def list_members(db: Session, team_id: str, user_id: str) -> List[TeamMember]:
    require_membership(db, team_id, user_id)
    return (
        db.query(TeamMember)
        .filter(TeamMember.team_id == team_id)
        .order_by(TeamMember.joined_at.asc())
        .all()
    )


def invite_member(db: Session, team_id: str, inviter_id: str, email: str,
                  role: TeamRole = TeamRole.MEMBER) -> TeamMember:
    require_permission(db, team_id, inviter_id, Permission.MANAGE_TEAM)
    role = TeamRole(role)
    if role is TeamRole.OWNER:
        raise BadRequestError("Use ownership transfer to add an owner")

    user = get_user_by_email(db, email)
    if user is None:
        raise NotFoundError("User not found. Please ask them to sign up first.")
    if get_membership(db, team_id, user.id) is not None:
        raise ConflictError("User is already a member of this team")

    member = TeamMember(
        team_id=team_id,
        user_id=user.id,
        role=role.value,
        permissions=role.default_permissions,
    )
    db.add(member)
    db.commit()
    return member


def update_member_role(db: Session, team_id: str, member_id: str, updater_id: str, role: TeamRole) -> TeamMember:
    require_permission(db, team_id, updater_id, Permission.MANAGE_TEAM)
    member = _get_member(db, team_id, member_id)
    role = TeamRole(role)
    if member.role == TeamRole.OWNER.value:
        raise ForbiddenError("Cannot change owner role")
    if role is TeamRole.OWNER:
        raise ForbiddenError("Cannot promote to owner")
    member.role = role.value
    member.permissions = role.default_permissions
    db.commit()
    return member


def update_member_permissions(db: Session, team_id: str, member_id: str, updater_id: str,
                              permissions: Dict[str, bool]) -> TeamMember:
    require_permission(db, team_id, updater_id, Permission.MANAGE_TEAM)
    member = _get_member(db, team_id, member_id)
    unknown = set(permissions) - _VALID_PERMISSIONS
    if unknown:
        raise BadRequestError(f"Unknown permissions: {', '.join(sorted(unknown))}")
    merged = dict(member.permissions or {})
    merged.update({k: bool(v) for k, v in permissions.items()})
    member.permissions = merged
    db.commit()
    return member


def remove_member(db: Session, team_id: str, member_id: str, remover_id: str) -> None:
    require_permission(db, team_id, remover_id, Permission.MANAGE_TEAM)
    member = _get_member(db, team_id, member_id)
    if member.role == TeamRole.OWNER.value:
        raise ForbiddenError("Cannot remove the owner")
    db.delete(member)
    db.commit()


def leave_team(db: Session, team_id: str, user_id: str) -> None:
    member = get_membership(db, team_id, user_id)
    if member is None:
        raise NotFoundError("Not a member of this team")
    if member.role == TeamRole.OWNER.value:
        raise ForbiddenError("Owner cannot leave the team. Transfer ownership first.")
    db.delete(member)
    db.commit()


def transfer_ownership(db: Session, team_id: str, current_owner_id: str, new_owner_id: str) -> Team:
    team = db.get(Team, team_id)
    if team is None or team.owner_id != current_owner_id:
        raise ForbiddenError("Only the owner can transfer ownership")
    new_owner = get_membership(db, team_id, new_owner_id)
    if new_owner is None:
        raise NotFoundError("New owner must be a team member")

    team.owner_id = new_owner_id
    new_owner.role = TeamRole.OWNER.value
    new_owner.permissions = TeamRole.OWNER.default_permissions

    old_owner = get_membership(db, team_id, current_owner_id)
    if old_owner is not None and old_owner is not new_owner:
        old_owner.role = TeamRole.ADMIN.value
        old_owner.permissions = TeamRole.ADMIN.default_permissions
    db.commit()
    logger.info("Team %s ownership moved to %s", team_id, new_owner_id)
    return team


# ---------------------------------------------------------------------------
# Stats / counters
# ---------------------------------------------------------------------------

def team_stats(db: Session, team_id: str, user_id: str) -> TeamStats:
    require_membership(db, team_id, user_id)
    members = db.query(TeamMember).filter(TeamMember.team_id == team_id).all()
    sent = sum(m.proposals_sent for m in members)
    won = sum(m.proposals_won for m in members)
    return TeamStats(
        member_count=len(members),
        total_proposals_sent=sent,
        total_proposals_won=won,
        total_revenue=round_cents(sum(m.total_revenue for m in members)),
        avg_win_rate=won / sent * 100.0 if sent else 0.0,
    )


def record_proposal_sent(db: Session, team_id: Optional[str], user_id: str) -> None:
    """Bump the sender's counter; no-op outside a team. Caller commits."""
    if not team_id:
        return
    member = get_membership(db, team_id, user_id)
    if member is not None:
        member.proposals_sent += 1


def record_proposal_won(db: Session, team_id: Optional[str], user_id: str, amount: float) -> None:
    if not team_id:
        return
    member = get_membership(db, team_id, user_id)
    if member is not None:
        member.proposals_won += 1
        member.total_revenue = round_cents((member.total_revenue or 0.0) + amount)
