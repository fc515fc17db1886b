from __future__ import annotations

from typing import TYPE_CHECKING

from app.listopia.policy import ApplicationPolicy

if TYPE_CHECKING:
    from app.listopia.modules.comments.models import Comment


class CommentPolicy(ApplicationPolicy):
    record: "Comment"

    def _target_owner(self) -> bool:
        owning = self.record.owning_list
        return owning is not None and owning.is_owner(self.user)

    def create(self) -> bool:
        if self.user is None:
            return False
        owning = self.record.owning_list
        if owning is None:
            return False
        # Any collaborator of the list (item comments go by the item's list).
        return owning.is_owner(self.user) or owning.collaborator_for(self.user) is not None

    def update(self) -> bool:
        return self.destroy()

    def destroy(self) -> bool:
        return (self.user is not None and self.record.user_id == self.user.id) or self._target_owner()
