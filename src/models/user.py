"""User directory entries and the authenticated :class:`Principal`."""

from __future__ import annotations

from pydantic import BaseModel, Field

from src.models.complaint import SYSTEM_ACTOR
from src.models.enums import Role


class User(BaseModel):
    """A person known to the service (submitter, officer, or admin)."""

    id: str
    roles: frozenset[Role] = Field(default_factory=lambda: frozenset({Role.USER}))
    full_name: str = ""
    email: str = ""

    @property
    def can_handle_complaints(self) -> bool:
        """Officers and admins may be assignees or escalation targets."""
        return Role.OFFICER in self.roles or Role.ADMIN in self.roles


class Principal(BaseModel):
    """The caller on whose behalf an operation runs.

    Roles are a fixed capability set; checks go through :meth:`has_role`
    or :meth:`has_any_role` rather than ad hoc flags.
    """

    model_config = {"frozen": True}

    id: str
    roles: frozenset[Role] = frozenset()
    full_name: str = ""
    email: str = ""

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    def has_any_role(self, *roles: Role) -> bool:
        return any(r in self.roles for r in roles)

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles

    @property
    def is_officer(self) -> bool:
        return Role.OFFICER in self.roles

    @property
    def is_staff(self) -> bool:
        return self.is_admin or self.is_officer

    @property
    def is_system(self) -> bool:
        return self.id == SYSTEM_ACTOR

    @property
    def display_name(self) -> str:
        return self.full_name or self.id

    def to_user(self) -> User:
        return User(id=self.id, roles=self.roles, full_name=self.full_name, email=self.email)


# The scheduler acts as SYSTEM with admin capabilities.
SYSTEM_PRINCIPAL = Principal(id=SYSTEM_ACTOR, roles=frozenset({Role.ADMIN}), full_name="System")
