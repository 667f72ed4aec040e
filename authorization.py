"""
Authorization engine

Every check resolves the target to its owning project, looks up the
caller's role there and compares it with the privilege the action needs.
Tasks and sprints have no permissions of their own.

Only two tiers of role exist for decisions: Developer, and everything
else. Manager and ProjectLead are equally privileged.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional

from database import object_id
from errors import Denied, DenyReason
from membership import MembershipStore
from repository import ResourceRepository
from schemas import DEVELOPER, Role

logger = logging.getLogger(__name__)


class Privilege(str, enum.Enum):
    """What a caller's role must satisfy."""
    SIGNED_IN = "signed_in"    # any authenticated caller
    READ = "read"              # any membership
    WRITE = "write"            # membership with a role other than Developer
    TASK_WRITE = "task_write"  # any membership; tasks are open to the whole team


class ResourceKind(str, enum.Enum):
    PROJECT = "project"
    SPRINT = "sprint"
    TASK = "task"


class Action(str, enum.Enum):
    CREATE_PROJECT = "project:create"
    READ_PROJECT = "project:read"
    UPDATE_PROJECT = "project:update"
    DELETE_PROJECT = "project:delete"

    LIST_TEAM = "team:list"
    MANAGE_TEAM = "team:manage"

    LIST_SPRINTS = "sprint:list"
    CREATE_SPRINT = "sprint:create"
    READ_SPRINT = "sprint:read"
    UPDATE_SPRINT = "sprint:update"
    DELETE_SPRINT = "sprint:delete"

    LIST_TASKS = "task:list"
    CREATE_TASK = "task:create"
    READ_TASK = "task:read"
    UPDATE_TASK = "task:update"
    DELETE_TASK = "task:delete"
    UPDATE_NOTES = "task:notes"
    UPDATE_BLOCKS = "task:blocks"

    @property
    def privilege(self) -> Privilege:
        return ACTION_PRIVILEGES[self]


ACTION_PRIVILEGES = {
    Action.CREATE_PROJECT: Privilege.SIGNED_IN,
    Action.READ_PROJECT: Privilege.READ,
    Action.UPDATE_PROJECT: Privilege.WRITE,
    Action.DELETE_PROJECT: Privilege.WRITE,
    Action.LIST_TEAM: Privilege.READ,
    Action.MANAGE_TEAM: Privilege.WRITE,
    Action.LIST_SPRINTS: Privilege.READ,
    Action.CREATE_SPRINT: Privilege.WRITE,
    Action.READ_SPRINT: Privilege.READ,
    Action.UPDATE_SPRINT: Privilege.WRITE,
    Action.DELETE_SPRINT: Privilege.WRITE,
    Action.LIST_TASKS: Privilege.READ,
    Action.CREATE_TASK: Privilege.TASK_WRITE,
    Action.READ_TASK: Privilege.READ,
    Action.UPDATE_TASK: Privilege.TASK_WRITE,
    Action.DELETE_TASK: Privilege.TASK_WRITE,
    Action.UPDATE_NOTES: Privilege.TASK_WRITE,
    Action.UPDATE_BLOCKS: Privilege.TASK_WRITE,
}


@dataclass(frozen=True)
class ResourceRef:
    kind: ResourceKind
    id: str

    @classmethod
    def project(cls, project_id: str) -> "ResourceRef":
        return cls(ResourceKind.PROJECT, project_id)

    @classmethod
    def sprint(cls, sprint_id: str) -> "ResourceRef":
        return cls(ResourceKind.SPRINT, sprint_id)

    @classmethod
    def task(cls, task_id: str) -> "ResourceRef":
        return cls(ResourceKind.TASK, task_id)


@dataclass(frozen=True)
class Decision:
    granted: bool
    reason: Optional[DenyReason] = None
    project_id: Optional[str] = None
    role: Optional[Role] = None

    @classmethod
    def grant(cls, project_id: Optional[str] = None, role: Optional[Role] = None) -> "Decision":
        return cls(True, None, project_id, role)

    @classmethod
    def deny(cls, reason: DenyReason, project_id: Optional[str] = None, role: Optional[Role] = None) -> "Decision":
        return cls(False, reason, project_id, role)

    def __bool__(self) -> bool:
        return self.granted


def _role_satisfies(role: Optional[Role], privilege: Privilege) -> Optional[DenyReason]:
    if privilege == Privilege.SIGNED_IN:
        return None
    if role is None:
        return DenyReason.NO_MEMBERSHIP
    if privilege == Privilege.WRITE and role == DEVELOPER:
        return DenyReason.INSUFFICIENT_ROLE
    return None


class AuthorizationEngine:
    """Stateless per call; all state lives in the store."""

    def __init__(self, memberships: MembershipStore, repository: ResourceRepository):
        self.memberships = memberships
        self.repository = repository

    def owning_project(self, ref: ResourceRef) -> str:
        """Project id a resource belongs to. Raises NotFound / InvalidID."""
        if ref.kind == ResourceKind.PROJECT:
            object_id(ref.id, "project")
            return ref.id
        if ref.kind == ResourceKind.SPRINT:
            return self.repository.get_sprint(ref.id).project_id
        task = self.repository.get_task(ref.id)
        return self.repository.get_sprint(task.sprint_id).project_id

    def authorize(self, principal_id: Optional[str], action: Action, ref: Optional[ResourceRef] = None) -> Decision:
        if not principal_id:
            return Decision.deny(DenyReason.NOT_SIGNED_IN)

        privilege = action.privilege
        if privilege == Privilege.SIGNED_IN:
            return Decision.grant()
        if ref is None:
            raise ValueError(f"{action.value} needs a target resource")

        project_id = self.owning_project(ref)
        role = self.memberships.role_of(principal_id, project_id)
        reason = _role_satisfies(role, privilege)
        if reason is not None:
            return Decision.deny(reason, project_id, role)
        return Decision.grant(project_id, role)

    def require(self, principal_id: Optional[str], action: Action, ref: Optional[ResourceRef] = None) -> Decision:
        """Authorize or raise Denied, so a refusal stops the caller before it writes."""
        decision = self.authorize(principal_id, action, ref)
        if not decision.granted:
            logger.info(
                f"Denied {action.value} on {ref.kind.value + ':' + ref.id if ref else '-'} "
                f"for {principal_id or 'anonymous'}: {decision.reason.value}"
            )
            raise Denied(decision.reason, f"{action.value} denied: {decision.reason.value}")
        return decision
