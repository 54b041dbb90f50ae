"""Tests for teams, memberships and permissions."""

import pytest

from backend.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from backend.database import Team
from backend.domain.enums import Permission, TeamRole
from backend.services import teams as team_service


@pytest.fixture
def team_setup(db_session, make_user, make_team):
    owner = make_user()
    member_user = make_user("member@example.com", name="Member")
    team = make_team(owner, "Sales Team!")
    member = team_service.invite_member(db_session, team.id, owner.id, "MEMBER@example.com")
    return owner, member_user, team, member


class TestRoleDefaults:
    def test_owner_has_everything(self):
        assert all(TeamRole.OWNER.default_permissions.values())

    def test_admin_lacks_billing_only(self):
        perms = TeamRole.ADMIN.default_permissions
        assert perms["can_manage_billing"] is False
        assert sum(perms.values()) == len(Permission) - 1

    def test_member_and_viewer(self):
        member = TeamRole.MEMBER.default_permissions
        assert member["can_send_proposals"] and not member["can_manage_team"]
        viewer = TeamRole.VIEWER.default_permissions
        assert [k for k, v in viewer.items() if v] == ["can_view_analytics"]


class TestTeams:
    def test_create_makes_owner_membership(self, db_session, make_user, make_team):
        owner = make_user()
        team = make_team(owner, "Sales Team!")
        assert team.slug.startswith("sales-team-")
        assert len(team.slug) == len("sales-team-") + 8
        member = team_service.get_membership(db_session, team.id, owner.id)
        assert member.role == "OWNER"
        assert member.permissions["can_manage_billing"] is True

    def test_list_and_get(self, db_session, team_setup):
        owner, member_user, team, _ = team_setup
        [(listed, membership)] = team_service.list_teams(db_session, member_user.id)
        assert listed.id == team.id
        assert membership.role == "MEMBER"
        _, mine = team_service.get_team(db_session, team.id, owner.id)
        assert mine.role == "OWNER"

    def test_non_member_cannot_read(self, db_session, team_setup, make_user):
        _, _, team, _ = team_setup
        stranger = make_user("x@example.com")
        with pytest.raises(ForbiddenError):
            team_service.get_team(db_session, team.id, stranger.id)
        with pytest.raises(NotFoundError):
            team_service.get_team(db_session, "nope", stranger.id)

    def test_update_needs_manage_team(self, db_session, team_setup):
        owner, member_user, team, _ = team_setup
        assert team_service.update_team(db_session, team.id, owner.id, name="Renamed").name == "Renamed"
        with pytest.raises(ForbiddenError):
            team_service.update_team(db_session, team.id, member_user.id, name="Hijack")

    def test_only_owner_deletes(self, db_session, team_setup):
        owner, member_user, team, _ = team_setup
        with pytest.raises(ForbiddenError):
            team_service.delete_team(db_session, team.id, member_user.id)
        team_service.delete_team(db_session, team.id, owner.id)
        assert db_session.get(Team, team.id) is None


class TestMembers:
    def test_invite_normalises_email_and_assigns_role_defaults(self, team_setup):
        _, member_user, _, member = team_setup
        assert member.user_id == member_user.id
        assert member.permissions == TeamRole.MEMBER.default_permissions

    def test_invite_errors(self, db_session, team_setup):
        owner, member_user, team, _ = team_setup
        with pytest.raises(ConflictError):
            team_service.invite_member(db_session, team.id, owner.id, member_user.email)
        with pytest.raises(NotFoundError):
            team_service.invite_member(db_session, team.id, owner.id, "ghost@example.com")
        with pytest.raises(BadRequestError):
            team_service.invite_member(db_session, team.id, owner.id, "ghost@example.com", TeamRole.OWNER)
        with pytest.raises(ForbiddenError):
            team_service.invite_member(db_session, team.id, member_user.id, "ghost@example.com")

    def test_role_change_resets_permissions(self, db_session, team_setup):
        owner, _, team, member = team_setup
        updated = team_service.update_member_role(db_session, team.id, member.id, owner.id, "ADMIN")
        assert updated.role == "ADMIN"
        assert updated.permissions == TeamRole.ADMIN.default_permissions

    def test_owner_role_is_protected(self, db_session, team_setup):
        owner, _, team, member = team_setup
        owner_member = team_service.get_membership(db_session, team.id, owner.id)
        with pytest.raises(ForbiddenError):
            team_service.update_member_role(db_session, team.id, owner_member.id, owner.id, "ADMIN")
        with pytest.raises(ForbiddenError):
            team_service.update_member_role(db_session, team.id, member.id, owner.id, "OWNER")
        with pytest.raises(ForbiddenError):
            team_service.remove_member(db_session, team.id, owner_member.id, owner.id)

    def test_permission_overrides_merge(self, db_session, team_setup):
        owner, member_user, team, member = team_setup
        team_service.update_member_permissions(
            db_session, team.id, member.id, owner.id, {"can_manage_templates": True},
        )
        assert team_service.check_permission(db_session, team.id, member_user.id, Permission.MANAGE_TEMPLATES)
        assert team_service.check_permission(db_session, team.id, member_user.id, Permission.SEND_PROPOSALS)

        with pytest.raises(BadRequestError):
            team_service.update_member_permissions(db_session, team.id, member.id, owner.id, {"can_fly": True})

    def test_remove_and_leave(self, db_session, team_setup, make_user):
        owner, member_user, team, member = team_setup
        team_service.remove_member(db_session, team.id, member.id, owner.id)
        assert team_service.get_membership(db_session, team.id, member_user.id) is None

        other = make_user("other@example.com")
        team_service.invite_member(db_session, team.id, owner.id, other.email)
        team_service.leave_team(db_session, team.id, other.id)
        assert team_service.get_membership(db_session, team.id, other.id) is None

        with pytest.raises(ForbiddenError):
            team_service.leave_team(db_session, team.id, owner.id)
        with pytest.raises(NotFoundError):
            team_service.leave_team(db_session, team.id, other.id)

    def test_member_from_other_team_not_found(self, db_session, team_setup, make_team, make_user):
        owner, _, team, _ = team_setup
        other_team = make_team(make_user("boss@example.com"), "Other")
        foreign = team_service.list_members(db_session, other_team.id, other_team.owner_id)[0]
        with pytest.raises(NotFoundError):
            team_service.remove_member(db_session, team.id, foreign.id, owner.id)


class TestOwnership:
    def test_transfer_demotes_previous_owner(self, db_session, team_setup):
        owner, member_user, team, _ = team_setup
        updated = team_service.transfer_ownership(db_session, team.id, owner.id, member_user.id)
        assert updated.owner_id == member_user.id
        assert team_service.get_membership(db_session, team.id, member_user.id).role == "OWNER"
        old = team_service.get_membership(db_session, team.id, owner.id)
        assert old.role == "ADMIN"
        assert old.permissions["can_manage_billing"] is False

    def test_transfer_checks(self, db_session, team_setup, make_user):
        owner, member_user, team, _ = team_setup
        with pytest.raises(ForbiddenError):
            team_service.transfer_ownership(db_session, team.id, member_user.id, member_user.id)
        outsider = make_user("out@example.com")
        with pytest.raises(NotFoundError):
            team_service.transfer_ownership(db_session, team.id, owner.id, outsider.id)


class TestStats:
    def test_stats_aggregate_members(self, db_session, team_setup):
        owner, member_user, team, member = team_setup
        owner_member = team_service.get_membership(db_session, team.id, owner.id)
        owner_member.proposals_sent, owner_member.proposals_won, owner_member.total_revenue = 3, 1, 1000.0
        member.proposals_sent, member.proposals_won, member.total_revenue = 1, 1, 250.5
        db_session.commit()

        stats = team_service.team_stats(db_session, team.id, member_user.id).to_dict()
        assert stats == {
            "member_count": 2,
            "total_proposals_sent": 4,
            "total_proposals_won": 2,
            "total_revenue": 1250.5,
            "avg_win_rate": 50.0,
        }

    def test_counters_ignore_non_team_proposals(self, db_session, team_setup):
        owner, _, team, _ = team_setup
        team_service.record_proposal_sent(db_session, None, owner.id)
        team_service.record_proposal_won(db_session, None, owner.id, 100.0)
        assert team_service.get_membership(db_session, team.id, owner.id).proposals_sent == 0
