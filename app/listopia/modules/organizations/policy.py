from __future__ import annotations

from typing import TYPE_CHECKING

from app.listopia.policy import ApplicationPolicy

if TYPE_CHECKING:
    from app.listopia.modules.organizations.models import Organization, Team


class OrganizationPolicy(ApplicationPolicy):
    record: "Organization"

    def _can_manage(self) -> bool:
        return self.record.user_role(self.user) in ("owner", "admin")

    def index(self) -> bool:
        return True

    def create(self) -> bool:
        return True

    def show(self) -> bool:
        return self.record.is_member(self.user)

    def update(self) -> bool:
        return self._can_manage()

    def destroy(self) -> bool:
        return self.record.user_is_owner(self.user)

    def manage_members(self) -> bool:
        return self._can_manage()

    def invite_member(self) -> bool:
        return self._can_manage()

    def remove_member(self) -> bool:
        return self._can_manage()

    def update_member_role(self) -> bool:
        return self.record.user_is_owner(self.user) or self.record.user_is_admin(self.user)

    def manage_teams(self) -> bool:
        return self._can_manage()

    def view_audit_logs(self) -> bool:
        return self._can_manage()

    def suspend(self) -> bool:
        return self.record.user_is_owner(self.user)

    def reactivate(self) -> bool:
        return self.record.user_is_owner(self.user)


class TeamPolicy(ApplicationPolicy):
    record: "Team"

    def _in_organization(self) -> bool:
        return self.user is not None and self.user.in_organization(self.record.organization_id)

    def _can_manage_team(self) -> bool:
        return self._in_organization() and self.record.user_role(self.user) in ("admin", "lead")

    def index(self) -> bool:
        return self._in_organization()

    def show(self) -> bool:
        return self._in_organization() and self.record.is_member(self.user)

    def create(self) -> bool:
        if not self._in_organization():
            return False
        membership = self.record.organization.membership_for(self.user)
        return membership is not None and membership.can_manage_teams()

    def update(self) -> bool:
        return self._can_manage_team()

    def destroy(self) -> bool:
        return self._can_manage_team()

    def manage_members(self) -> bool:
        return self._can_manage_team()

    def add_member(self) -> bool:
        return self.manage_members()

    def remove_member(self) -> bool:
        return self.manage_members()

    def update_member_role(self) -> bool:
        return self._can_manage_team()
