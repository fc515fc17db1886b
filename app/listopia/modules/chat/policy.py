from __future__ import annotations

from typing import TYPE_CHECKING

from app.listopia.policy import ApplicationPolicy

if TYPE_CHECKING:
    from app.listopia.modules.chat.models import Chat


class ChatPolicy(ApplicationPolicy):
    record: "Chat"

    def _organization_ok(self) -> bool:
        if self.record.organization_id is None:
            return True
        return self.user is not None and self.user.in_organization(self.record.organization_id)

    def _owns_chat(self) -> bool:
        return self.user is not None and self.record.user_id == self.user.id and self._organization_ok()

    def index(self) -> bool:
        return self.user is not None

    def create(self) -> bool:
        return self.user is not None and self._organization_ok()

    def show(self) -> bool:
        return self._owns_chat()

    def create_message(self) -> bool:
        return self._owns_chat()

    def destroy(self) -> bool:
        return self._owns_chat()

    def archive(self) -> bool:
        return self._owns_chat()

    def restore(self) -> bool:
        return self._owns_chat()
