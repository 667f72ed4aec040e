"""
Resource repository for projects, sprints, tasks and users.

Writes that span collections (project creation and deletion) run as a
Saga: ordered steps, each with an optional compensation that is replayed
in reverse when a later step fails.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence

from database import PROJECTS, SPRINTS, TASKS, USERS, DocumentStore, object_id
from errors import AgilityError, InvalidID, NotFound
from membership import MembershipStore
from schemas import (
    PROJECT_LEAD,
    DEVELOPER,
    Membership,
    Project,
    Role,
    Sprint,
    SprintParams,
    Task,
    TaskParams,
    TeamMember,
    User,
    from_document,
)

logger = logging.getLogger(__name__)


class Saga:
    """Run steps in order; on failure, undo the completed ones in reverse."""

    def __init__(self, name: str):
        self.name = name
        self._compensations: List[Callable[[], object]] = []

    def step(self, action: Callable[[], Any], compensation: Optional[Callable[[Any], object]] = None):
        """Run action; compensation receives its result if a later step fails."""
        try:
            result = action()
        except AgilityError:
            self._compensate()
            raise
        if compensation is not None:
            self._compensations.append(lambda: compensation(result))
        return result

    def _compensate(self) -> None:
        for compensation in reversed(self._compensations):
            logger.warning(f"Saga {self.name}: compensating")
            try:
                compensation()
            except AgilityError as e:
                # The step failure is what the caller sees
                logger.error(f"Saga {self.name}: compensation failed, state left partial: {e}")
        self._compensations.clear()


def _touch(fields: dict) -> dict:
    fields["updated_at"] = datetime.now(timezone.utc)
    return fields


class ResourceRepository:
    def __init__(self, store: DocumentStore, memberships: MembershipStore):
        self.store = store
        self.memberships = memberships

    # Users

    def get_user(self, user_id: str) -> User:
        if not isinstance(user_id, str) or not user_id:
            raise InvalidID("user", user_id)
        doc = self.store.find_one(USERS, {"_id": user_id})
        if not doc:
            raise NotFound("user", user_id)
        return from_document(User, doc)

    def get_user_by_email(self, email: str) -> User:
        doc = self.store.find_one(USERS, {"email": email})
        if not doc:
            raise NotFound("user", email)
        return from_document(User, doc)

    # Projects

    def create_project(self, name: str, description: Optional[str], creator_id: str) -> Project:
        """Create a project with its creator as ProjectLead."""
        saga = Saga("create_project")
        project_id = saga.step(
            lambda: self.store.create_document(PROJECTS, {"name": name, "description": description}),
            compensation=lambda pid: self.store.delete_one(PROJECTS, {"_id": object_id(pid, "project")}),
        )
        saga.step(lambda: self.memberships.add(project_id, creator_id, PROJECT_LEAD))
        logger.info(f"Project {project_id} created by {creator_id}")
        return Project(id=project_id, name=name, description=description)

    def get_project(self, project_id: str) -> Project:
        doc = self.store.find_one(PROJECTS, {"_id": object_id(project_id, "project")})
        if not doc:
            raise NotFound("project", project_id)
        return from_document(Project, doc)

    def get_projects_by_ids(self, project_ids: Sequence[str]) -> List[Project]:
        ids = [object_id(pid, "project") for pid in project_ids]
        if not ids:
            return []
        return [from_document(Project, d) for d in self.store.find(PROJECTS, {"_id": {"$in": ids}})]

    def projects_for_user(self, user_id: str) -> List[Project]:
        """Projects the user has a team row in."""
        project_ids = [m.project_id for m in self.memberships.all_roles_of(user_id)]
        return self.get_projects_by_ids(project_ids)

    def update_project(self, project_id: str, name: str, description: Optional[str]) -> Project:
        matched = self.store.update_one(
            PROJECTS,
            {"_id": object_id(project_id, "project")},
            _touch({"name": name, "description": description}),
        )
        if matched == 0:
            raise NotFound("project", project_id)
        return Project(id=project_id, name=name, description=description)

    def delete_project(self, project_id: str) -> None:
        """Remove the project's memberships, then the project itself.

        Not atomic. If the project delete fails, the removed memberships are
        put back; if that also fails the project is left with no members,
        which hides it from everyone without corrupting anything.
        """
        oid = object_id(project_id, "project")
        self.get_project(project_id)

        saga = Saga("delete_project")
        removed = self.memberships.members_of(project_id)
        saga.step(
            lambda: self.memberships.remove_all(project_id),
            compensation=lambda _count: self.memberships.restore(removed),
        )
        deleted = saga.step(lambda: self.store.delete_one(PROJECTS, {"_id": oid}))
        if deleted == 0:
            raise NotFound("project", project_id)
        logger.info(f"Project {project_id} deleted with {len(removed)} memberships")

    # Team

    def team_for_project(self, project_id: str) -> List[TeamMember]:
        team = []
        for membership in self.memberships.members_of(project_id):
            doc = self.store.find_one(USERS, {"_id": membership.user_id})
            user = from_document(User, doc) if doc else User(id=membership.user_id)
            team.append(TeamMember(user=user, role=membership.role))
        return team

    def add_member_by_email(self, project_id: str, email: str, role: Role = DEVELOPER) -> Membership:
        self.get_project(project_id)
        user = self.get_user_by_email(email)
        return self.memberships.add(project_id, user.id, role)

    # Sprints

    def create_sprint(self, project_id: str, params: SprintParams) -> Sprint:
        self.get_project(project_id)
        data = {"project_id": project_id, **params.model_dump()}
        sprint_id = self.store.create_document(SPRINTS, data)
        return Sprint(id=sprint_id, **data)

    def get_sprint(self, sprint_id: str) -> Sprint:
        doc = self.store.find_one(SPRINTS, {"_id": object_id(sprint_id, "sprint")})
        if not doc:
            raise NotFound("sprint", sprint_id)
        return from_document(Sprint, doc)

    def sprints_for_project(self, project_id: str) -> List[Sprint]:
        return [from_document(Sprint, d) for d in self.store.find(SPRINTS, {"project_id": project_id})]

    def update_sprint(self, sprint_id: str, params: SprintParams) -> Sprint:
        oid = object_id(sprint_id, "sprint")
        current = self.get_sprint(sprint_id)
        self.store.update_one(SPRINTS, {"_id": oid}, _touch(params.model_dump()))
        return Sprint(id=sprint_id, project_id=current.project_id, **params.model_dump())

    def delete_sprint(self, sprint_id: str) -> None:
        """Delete the sprint only.

        Its tasks stay stored. Authorized calls can no longer reach them since
        the sprint does not resolve to a project; orphaned_tasks is the only
        supported way to find them, for maintenance jobs outside the HTTP API.
        """
        deleted = self.store.delete_one(SPRINTS, {"_id": object_id(sprint_id, "sprint")})
        if deleted == 0:
            raise NotFound("sprint", sprint_id)
        logger.info(f"Sprint {sprint_id} deleted; its tasks are left in place")

    def orphaned_tasks(self, sprint_id: str) -> List[Task]:
        """Tasks still stored under a sprint that no longer exists."""
        if self.store.find_one(SPRINTS, {"_id": object_id(sprint_id, "sprint")}):
            return []
        return self.tasks_for_sprint(sprint_id)

    # Tasks

    def create_task(self, sprint_id: str, params: TaskParams) -> Task:
        self.get_sprint(sprint_id)
        data = {"sprint_id": sprint_id, **params.model_dump()}
        task_id = self.store.create_document(TASKS, data)
        return Task(id=task_id, **data)

    def get_task(self, task_id: str) -> Task:
        doc = self.store.find_one(TASKS, {"_id": object_id(task_id, "task")})
        if not doc:
            raise NotFound("task", task_id)
        return from_document(Task, doc)

    def tasks_for_sprint(self, sprint_id: str) -> List[Task]:
        return [from_document(Task, d) for d in self.store.find(TASKS, {"sprint_id": sprint_id})]

    def update_task(self, task_id: str, params: TaskParams) -> Task:
        """Replace every mutable field, notes and blocks included."""
        oid = object_id(task_id, "task")
        current = self.get_task(task_id)
        self.store.update_one(TASKS, {"_id": oid}, _touch(params.model_dump()))
        return Task(id=task_id, sprint_id=current.sprint_id, **params.model_dump())

    def delete_task(self, task_id: str) -> None:
        deleted = self.store.delete_one(TASKS, {"_id": object_id(task_id, "task")})
        if deleted == 0:
            raise NotFound("task", task_id)

    def update_notes(self, task_id: str, notes: List[str]) -> Task:
        return self._replace_task_field(task_id, "notes", notes)

    def update_blocks(self, task_id: str, blocks: List[str]) -> Task:
        return self._replace_task_field(task_id, "blocks", blocks)

    def _replace_task_field(self, task_id: str, field: str, values: List[str]) -> Task:
        matched = self.store.update_one(
            TASKS, {"_id": object_id(task_id, "task")}, _touch({field: list(values)})
        )
        if matched == 0:
            raise NotFound("task", task_id)
        return self.get_task(task_id)
