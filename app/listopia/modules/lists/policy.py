from __future__ import annotations

from typing import TYPE_CHECKING

from app.listopia.policy import ApplicationPolicy

if TYPE_CHECKING:
    from app.listopia.modules.lists.models import List, ListItem


class ListPolicy(ApplicationPolicy):
    record: "List"

    def _inside_organization(self) -> bool:
        # Lists that belong to an organization are invisible outside it, whatever else applies.
        if self.record.organization_id is None:
            return True
        return self.user is not None and self.user.in_organization(self.record.organization_id)

    def _is_owner(self) -> bool:
        return self.record.is_owner(self.user)

    def _is_write_collaborator(self) -> bool:
        c = self.record.collaborator_for(self.user)
        return c is not None and c.permission == "write"

    def index(self) -> bool:
        return True

    def create(self) -> bool:
        return True

    def show(self) -> bool:
        if not self._inside_organization():
            return False
        return self._is_owner() or self.record.collaborator_for(self.user) is not None or bool(self.record.is_public)

    def update(self) -> bool:
        if not self._inside_organization():
            return False
        return self._is_owner() or self._is_write_collaborator()

    def toggle_status(self) -> bool:
        return self.update()

    def destroy(self) -> bool:
        if not self._inside_organization():
            return False
        return self._is_owner()

    def share(self) -> bool:
        if not self._inside_organization():
            return False
        return self._is_owner() or self._is_write_collaborator()

    def manage_collaborators(self) -> bool:
        if self._is_owner():
            return True
        c = self.record.collaborator_for(self.user)
        return c is not None and c.can_invite()

    def duplicate(self) -> bool:
        return self.show()

    def toggle_public_access(self) -> bool:
        return self._is_owner()


class ListItemPolicy(ApplicationPolicy):
    record: "ListItem"

    def _list_readable(self) -> bool:
        if self.record.parent_list.readable_by(self.user):
            return True
        return self.record.collaborator_for(self.user) is not None

    def _list_writable(self) -> bool:
        if self.user is None:
            return False
        parent = self.record.parent_list
        if parent.is_owner(self.user) or parent.writable_by(self.user):
            return True
        c = self.record.collaborator_for(self.user)
        if c is not None and c.permission == "write":
            return True
        return self.record.assigned_user_id is not None and self.record.assigned_user_id == self.user.id

    def show(self) -> bool:
        return self._list_readable()

    def create(self) -> bool:
        return self._list_writable()

    def update(self) -> bool:
        return self._list_writable()

    def destroy(self) -> bool:
        return self._list_writable()

    def toggle_completion(self) -> bool:
        return self._list_writable()

    def toggle_status(self) -> bool:
        return self._list_writable()

    def assign(self) -> bool:
        return self._list_writable()

    def manage_collaborators(self) -> bool:
        if self.user is None:
            return False
        if self.record.parent_list.is_owner(self.user):
            return True
        return self.record.assigned_user_id == self.user.id
