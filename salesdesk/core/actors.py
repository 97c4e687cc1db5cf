from dataclasses import dataclass

from ..constants import ADMIN_ROLES, SYSTEM, TOP_MANAGEMENT_ROLES


@dataclass(frozen=True)
class Actor:
    id: int
    role: str
    name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_top_management(self) -> bool:
        return self.role in TOP_MANAGEMENT_ROLES

    def has_any_role(self, *roles: str) -> bool:
        return self.role in roles


SYSTEM_ACTOR = Actor(id=0, role=SYSTEM, name="scheduler")
