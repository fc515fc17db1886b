"""
Application exceptions.

Services raise these; the handlers registered in create_app() turn them into
HTTP responses (422, 403, 404).
"""
from __future__ import annotations


class ListopiaError(Exception):
    """Base class for errors raised by Listopia services."""


class ValidationError(ListopiaError):
    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class NotAuthorizedError(ListopiaError):
    def __init__(self, policy: str, action: str):
        self.policy = policy
        self.action = action
        super().__init__(f"not allowed to {action} ({policy})")


class NotFoundError(ListopiaError):
    def __init__(self, entity: str, entity_id: object | None = None):
        self.entity = entity
        self.entity_id = entity_id
        msg = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(msg)


class BlockedMessageError(ListopiaError):
    """Chat input rejected by the prompt-injection screen."""

    def __init__(self, message: str, *, patterns: list[str] | None = None, risk_score: int = 0):
        self.patterns = patterns or []
        self.risk_score = risk_score
        super().__init__(message)
