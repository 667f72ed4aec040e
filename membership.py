"""
Project team memberships

One row per (project, user) in the "team" collection. Absence of a row is
a normal answer ("no access"), never an error.
"""
import logging
from typing import Iterable, List, Optional

from database import TEAM, DocumentStore
from errors import Conflict, InvalidID, NotFound
from schemas import DEVELOPER, Membership, Role

logger = logging.getLogger(__name__)


def _check_user_id(user_id: str) -> None:
    if not isinstance(user_id, str) or not user_id:
        raise InvalidID("user", user_id)


def _to_membership(doc: dict) -> Membership:
    return Membership(project_id=doc["project_id"], user_id=doc["user_id"], role=doc["role"])


class MembershipStore:
    def __init__(self, store: DocumentStore):
        self.store = store

    def role_of(self, user_id: str, project_id: str) -> Optional[Role]:
        doc = self.store.find_one(TEAM, {"project_id": project_id, "user_id": user_id})
        if doc is None:
            return None
        return doc["role"]

    def all_roles_of(self, user_id: str) -> List[Membership]:
        """Every (project, role) the user holds."""
        _check_user_id(user_id)
        return [_to_membership(d) for d in self.store.find(TEAM, {"user_id": user_id})]

    def members_of(self, project_id: str) -> List[Membership]:
        return [_to_membership(d) for d in self.store.find(TEAM, {"project_id": project_id})]

    def add(self, project_id: str, user_id: str, role: Role = DEVELOPER) -> Membership:
        _check_user_id(user_id)
        if self.role_of(user_id, project_id) is not None:
            raise Conflict(f"User {user_id} is already a member of project {project_id}")
        membership = Membership(project_id=project_id, user_id=user_id, role=role)
        # The unique team index turns a concurrent duplicate into Conflict too
        self.store.insert_one(TEAM, membership.model_dump())
        logger.info(f"Added {user_id} to project {project_id} as {role}")
        return membership

    def set_role(self, user_id: str, project_id: str, role: Role) -> Membership:
        _check_user_id(user_id)
        membership = Membership(project_id=project_id, user_id=user_id, role=role)
        matched = self.store.update_one(
            TEAM, {"project_id": project_id, "user_id": user_id}, {"role": membership.role}
        )
        if matched == 0:
            raise NotFound("membership", f"{project_id}/{user_id}")
        logger.info(f"Set role of {user_id} on project {project_id} to {role}")
        return membership

    def remove(self, user_id: str, project_id: str) -> None:
        """Remove one member. The last remaining member cannot be removed."""
        _check_user_id(user_id)
        members = self.members_of(project_id)
        if not any(m.user_id == user_id for m in members):
            raise NotFound("membership", f"{project_id}/{user_id}")
        if len(members) == 1:
            raise Conflict(f"Cannot remove the last member of project {project_id}")
        self.store.delete_one(TEAM, {"project_id": project_id, "user_id": user_id})
        logger.info(f"Removed {user_id} from project {project_id}")

    def remove_all(self, project_id: str) -> int:
        deleted = self.store.delete_many(TEAM, {"project_id": project_id})
        logger.info(f"Removed {deleted} memberships of project {project_id}")
        return deleted

    def restore(self, memberships: Iterable[Membership]) -> None:
        """Re-insert rows previously removed by remove_all."""
        self.store.insert_many(TEAM, [m.model_dump() for m in memberships])
