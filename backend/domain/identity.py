"""
Typed caller identity, resolved once per request by deps.py and passed
explicitly into every service call that needs it.
"""
from dataclasses import dataclass

from domain.enums import Role


@dataclass(frozen=True)
class RequestIdentity:
    subject: str  # customer id, or admin username
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN
