from dataclasses import dataclass, field
from enum import Enum


class PrincipalType(str, Enum):
    HUMAN = "human"
    MACHINE = "machine"


@dataclass(slots=True)
class Principal:
    """An authenticated caller: a host or admin user, or the slot sweep module."""

    principal_type: PrincipalType
    subject: str
    scopes: set[str] = field(default_factory=set)
    role: str | None = None
    actor_id: str | None = None
    host_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.principal_type is PrincipalType.HUMAN and self.role == "admin"

    def require_scopes(self, required: set[str]) -> None:
        missing = required - self.scopes
        if missing:
            raise PermissionError(f"missing required scopes: {sorted(missing)}")

    def require_host_access(self, host_id: str) -> None:
        if self.is_admin:
            return
        if self.host_id is None or self.host_id != host_id:
            raise PermissionError(f"principal cannot act on behalf of host {host_id}")
