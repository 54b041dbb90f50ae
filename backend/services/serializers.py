"""
ORM row -> API dict conversion.

Call these while the session that loaded the row is still open so lazy
relationships (blocks, pricing items, group fields) can load.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from backend.database import (
    CustomFieldDefinition,
    CustomFieldGroup,
    Proposal,
    ProposalBlock,
    Team,
    TeamMember,
    row_to_dict,
)
from backend.services.pricing import calculate_deposit, calculate_total


def block_dict(block: ProposalBlock) -> Dict[str, Any]:
    out = row_to_dict(block)
    out["pricing_items"] = [row_to_dict(item) for item in block.pricing_items]
    return out


def proposal_dict(proposal: Proposal, include_blocks: bool = True) -> Dict[str, Any]:
    out = row_to_dict(proposal)
    if include_blocks:
        out["blocks"] = [block_dict(b) for b in proposal.blocks]
    out["total"] = calculate_total(proposal)
    out["deposit_due"] = calculate_deposit(proposal)
    return out


def public_proposal_dict(proposal: Proposal) -> Dict[str, Any]:
    """Client-facing view: no owner, team or payment provider identifiers."""
    out = proposal_dict(proposal)
    for key in ("user_id", "team_id", "stripe_payment_intent_id"):
        out.pop(key, None)
    return out


def member_dict(member: TeamMember) -> Dict[str, Any]:
    return row_to_dict(member)


def team_dict(team: Team, membership: Optional[TeamMember] = None) -> Dict[str, Any]:
    out = row_to_dict(team)
    out["member_count"] = len(team.members)
    if membership is not None:
        out["role"] = membership.role
        out["permissions"] = dict(membership.permissions or {})
    return out


def field_dict(field: CustomFieldDefinition) -> Dict[str, Any]:
    return row_to_dict(field)


def group_dict(group: CustomFieldGroup, fields: Optional[Iterable[CustomFieldDefinition]] = None) -> Dict[str, Any]:
    out = row_to_dict(group)
    if fields is None:
        fields = [f for f in group.fields if f.is_active]
    out["fields"] = [field_dict(f) for f in fields]
    return out


def rows(items: Iterable[Any]) -> List[Dict[str, Any]]:
    return [row_to_dict(r) for r in items]
