from __future__ import annotations

from typing import TYPE_CHECKING

from app.listopia.policy import ApplicationPolicy
from app.listopia.utils import normalize_email

if TYPE_CHECKING:
    from app.listopia.modules.collaboration.models import Collaborator, Invitation


class CollaboratorPolicy(ApplicationPolicy):
    record: "Collaborator"

    def _list_owner(self) -> bool:
        owning = self.record.owning_list
        return owning is not None and owning.is_owner(self.user)

    def _own_collaboration(self) -> bool:
        return self.user is not None and self.record.user_id == self.user.id

    def index(self) -> bool:
        return self._list_owner() or self._own_collaboration()

    def create(self) -> bool:
        return self._list_owner()

    def update(self) -> bool:
        return self._list_owner()

    def destroy(self) -> bool:
        return self._list_owner() or self._own_collaboration()


class InvitationPolicy(ApplicationPolicy):
    record: "Invitation"

    def _target_owner(self) -> bool:
        owning = self.record.owning_list
        return owning is not None and owning.is_owner(self.user)

    def _inviter(self) -> bool:
        return self.user is not None and self.record.invited_by_id == self.user.id

    def _recipient(self) -> bool:
        if self.user is None or not self.record.email:
            return False
        return normalize_email(self.record.email) == normalize_email(self.user.email)

    def create(self) -> bool:
        if self.user is None:
            return False
        if self._target_owner():
            return True
        owning = self.record.owning_list
        list_collab = owning.collaborator_for(self.user) if owning is not None else None
        if list_collab is not None and list_collab.can_invite():
            return True
        item = self.record.target_item
        if item is not None:
            item_collab = item.collaborator_for(self.user)
            return item_collab is not None and item_collab.can_invite()
        return False

    def accept(self) -> bool:
        return self._recipient()

    def show(self) -> bool:
        return True

    def index(self) -> bool:
        return True

    def destroy(self) -> bool:
        return self._target_owner() or self._inviter()

    def resend(self) -> bool:
        return self._target_owner() or self._inviter()

    def decline(self) -> bool:
        return self._recipient() and self.record.status == "pending"

    def revoke(self) -> bool:
        return self._inviter() and self.record.status == "pending"

    def update(self) -> bool:
        return self._inviter() and self.record.status == "pending"
