from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

from .errors import PermissionDenied, ValidationError


class Role(IntEnum):
    VIEWER = 1
    DRIVER = 2
    FLEET_MANAGER = 3
    ADMIN = 4

    @classmethod
    def parse(cls, value: "str | Role") -> "Role":
        if isinstance(value, Role):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError as error:
            raise ValidationError(f"Unknown role: {value!r}") from error

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, as handed over by the identity provider."""

    actor_id: str
    organization_id: str
    role: Role

    def __post_init__(self) -> None:
        if not self.actor_id or not self.organization_id:
            raise ValidationError("actor_id and organization_id are required.")
        object.__setattr__(self, "role", Role.parse(self.role))

    def at_least(self, role: Role) -> bool:
        return self.role >= role


class Action(str, Enum):
    CREATE = "create"
    EDIT = "edit"
    APPROVE = "approve"
    REJECT = "reject"
    COMPLETE = "complete"
    CANCEL = "cancel"
    VIEW_ALL = "view_all"
    MANAGE_FLEET = "manage_fleet"
    RETIRE_VEHICLE = "retire_vehicle"


@dataclass(frozen=True)
class Capability:
    minimum_role: Role
    owner_allowed: bool = False


CAPABILITIES: dict[Action, Capability] = {
    Action.CREATE: Capability(Role.DRIVER),
    Action.EDIT: Capability(Role.FLEET_MANAGER, owner_allowed=True),
    Action.APPROVE: Capability(Role.FLEET_MANAGER),
    Action.REJECT: Capability(Role.FLEET_MANAGER),
    Action.COMPLETE: Capability(Role.FLEET_MANAGER),
    Action.CANCEL: Capability(Role.FLEET_MANAGER, owner_allowed=True),
    Action.VIEW_ALL: Capability(Role.FLEET_MANAGER),
    Action.MANAGE_FLEET: Capability(Role.FLEET_MANAGER),
    Action.RETIRE_VEHICLE: Capability(Role.ADMIN),
}


def is_allowed(actor: Actor, action: Action, *, is_owner: bool = False) -> bool:
    capability = CAPABILITIES[action]
    if actor.at_least(capability.minimum_role):
        return True
    return capability.owner_allowed and is_owner


def authorize(actor: Actor, action: Action, *, is_owner: bool = False) -> None:
    """Raise PermissionDenied unless ``actor`` may perform ``action``.

    ``is_owner`` only counts for actions flagged ``owner_allowed``; for those
    the booking's requester passes regardless of rank.
    """
    if is_allowed(actor, action, is_owner=is_owner):
        return

    capability = CAPABILITIES[action]
    if capability.owner_allowed:
        message = (
            f"Only the requester or a {capability.minimum_role.label} or higher may {action.value} this booking."
        )
    else:
        message = f"Role {actor.role.label} may not {action.value}; requires {capability.minimum_role.label} or higher."
    raise PermissionDenied(message)
