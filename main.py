import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from authorization import Action, AuthorizationEngine, ResourceRef
from config import settings
from database import DocumentStore, get_store
from errors import (
    AgilityError,
    AuthError,
    Conflict,
    Denied,
    DenyReason,
    InvalidID,
    NotFound,
    StoreError,
)
from identity import IdentityResolver, TokenVerifier
from membership import MembershipStore
from repository import ResourceRepository
from schemas import (
    BlocksUpdate,
    MemberAdd,
    MemberUpdate,
    Membership,
    NotesUpdate,
    Project,
    ProjectParams,
    Sprint,
    SprintParams,
    Task,
    TaskParams,
    TeamMember,
    TokenRequest,
    User,
)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
if not settings.debug:
    logging.getLogger("pymongo").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


# Wiring
@dataclass
class Services:
    store: DocumentStore
    identity: IdentityResolver
    memberships: MembershipStore
    repository: ResourceRepository
    engine: AuthorizationEngine


def build_services(store: DocumentStore, verifier: TokenVerifier) -> Services:
    memberships = MembershipStore(store)
    repository = ResourceRepository(store, memberships)
    return Services(
        store=store,
        identity=IdentityResolver(store, verifier),
        memberships=memberships,
        repository=repository,
        engine=AuthorizationEngine(memberships, repository),
    )


@lru_cache
def get_services() -> Services:
    return build_services(get_store(), TokenVerifier.from_settings(settings))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Agility backend...")
    try:
        settings.validate_token_settings()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise
    get_store().ensure_indexes()
    logger.info(f"Using database {settings.database_name}")
    yield
    logger.info("Shutting down Agility backend...")


app = FastAPI(title="Agility Backend API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed:.1f} ms")
    return response


# Error mapping
def _status_for(exc: AgilityError) -> int:
    if isinstance(exc, Denied):
        return 401 if exc.reason == DenyReason.NOT_SIGNED_IN else 403
    if isinstance(exc, AuthError):
        return 401
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, InvalidID):
        return 400
    if isinstance(exc, Conflict):
        return 409
    if isinstance(exc, StoreError):
        return 503
    return 500


@app.exception_handler(AgilityError)
async def agility_error_handler(request: Request, exc: AgilityError):
    body = {"detail": exc.message, "error": exc.kind}
    if isinstance(exc, Denied):
        body["reason"] = exc.reason.value
    headers = {"WWW-Authenticate": "Bearer"} if _status_for(exc) == 401 else None
    return JSONResponse(status_code=_status_for(exc), content=body, headers=headers)


# Principal
def get_principal(
    authorization: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
) -> Optional[User]:
    """The signed-in user, or None when no credentials were sent."""
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        raise AuthError("Invalid authorization header")
    token = authorization.partition(" ")[2].strip()
    if not token:
        raise AuthError("Missing bearer token")
    return services.identity.resolve(token)


def _principal_id(user: Optional[User]) -> Optional[str]:
    return user.id if user else None


# Healthcheck
@app.get("/api/v1/healthcheck/")
def healthcheck():
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


# User Routes
@app.post("/api/v1/users", response_model=User)
def validate_user(payload: TokenRequest, services: Services = Depends(get_services)):
    return services.identity.resolve(payload.token)


@app.get("/api/v1/users/me", response_model=User)
def current_user(user: Optional[User] = Depends(get_principal)):
    if user is None:
        raise Denied(DenyReason.NOT_SIGNED_IN)
    return user


@app.get("/api/v1/members/status", response_model=List[Membership])
def member_status(user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    if user is None:
        raise Denied(DenyReason.NOT_SIGNED_IN)
    return services.memberships.all_roles_of(user.id)


# Project Routes
@app.get("/api/v1/projects/", response_model=List[Project])
def list_projects(user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    if user is None:
        raise Denied(DenyReason.NOT_SIGNED_IN)
    return services.repository.projects_for_user(user.id)


@app.post("/api/v1/projects/", response_model=Project, status_code=201)
def create_project(payload: ProjectParams, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.CREATE_PROJECT)
    return services.repository.create_project(payload.name, payload.description, user.id)


@app.get("/api/v1/projects/{project_id}", response_model=Project)
def get_project(project_id: str, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.READ_PROJECT, ResourceRef.project(project_id))
    return services.repository.get_project(project_id)


@app.put("/api/v1/projects/{project_id}", response_model=Project)
def update_project(project_id: str, payload: ProjectParams, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.UPDATE_PROJECT, ResourceRef.project(project_id))
    return services.repository.update_project(project_id, payload.name, payload.description)


@app.delete("/api/v1/projects/{project_id}", status_code=204)
def delete_project(project_id: str, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.DELETE_PROJECT, ResourceRef.project(project_id))
    services.repository.delete_project(project_id)


# Members management
@app.get("/api/v1/projects/{project_id}/members", response_model=List[TeamMember])
def list_members(project_id: str, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.LIST_TEAM, ResourceRef.project(project_id))
    return services.repository.team_for_project(project_id)


@app.post("/api/v1/projects/{project_id}/members", response_model=Membership, status_code=201)
def add_member(project_id: str, payload: MemberAdd, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.MANAGE_TEAM, ResourceRef.project(project_id))
    return services.repository.add_member_by_email(project_id, payload.email, payload.role)


@app.put("/api/v1/projects/{project_id}/members", response_model=Membership)
def update_member_role(project_id: str, payload: MemberUpdate, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.MANAGE_TEAM, ResourceRef.project(project_id))
    return services.memberships.set_role(payload.user_id, project_id, payload.role)


@app.delete("/api/v1/projects/{project_id}/members/{member_user_id}", status_code=204)
def remove_member(project_id: str, member_user_id: str, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.MANAGE_TEAM, ResourceRef.project(project_id))
    services.memberships.remove(member_user_id, project_id)


# Sprint Routes
@app.get("/api/v1/projects/{project_id}/sprints", response_model=List[Sprint])
def list_sprints(project_id: str, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.LIST_SPRINTS, ResourceRef.project(project_id))
    return services.repository.sprints_for_project(project_id)


@app.post("/api/v1/projects/{project_id}/sprints", response_model=Sprint, status_code=201)
def create_sprint(project_id: str, payload: SprintParams, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.CREATE_SPRINT, ResourceRef.project(project_id))
    return services.repository.create_sprint(project_id, payload)


@app.get("/api/v1/sprints/{sprint_id}", response_model=Sprint)
def get_sprint(sprint_id: str, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.READ_SPRINT, ResourceRef.sprint(sprint_id))
    return services.repository.get_sprint(sprint_id)


@app.put("/api/v1/sprints/{sprint_id}", response_model=Sprint)
def update_sprint(sprint_id: str, payload: SprintParams, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.UPDATE_SPRINT, ResourceRef.sprint(sprint_id))
    return services.repository.update_sprint(sprint_id, payload)


@app.delete("/api/v1/sprints/{sprint_id}", status_code=204)
def delete_sprint(sprint_id: str, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.DELETE_SPRINT, ResourceRef.sprint(sprint_id))
    services.repository.delete_sprint(sprint_id)


# Task Routes
@app.get("/api/v1/sprints/{sprint_id}/tasks", response_model=List[Task])
def list_tasks(sprint_id: str, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.LIST_TASKS, ResourceRef.sprint(sprint_id))
    return services.repository.tasks_for_sprint(sprint_id)


@app.post("/api/v1/sprints/{sprint_id}/tasks", response_model=Task, status_code=201)
def create_task(sprint_id: str, payload: TaskParams, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.CREATE_TASK, ResourceRef.sprint(sprint_id))
    return services.repository.create_task(sprint_id, payload)


@app.get("/api/v1/tasks/{task_id}", response_model=Task)
def get_task(task_id: str, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.READ_TASK, ResourceRef.task(task_id))
    return services.repository.get_task(task_id)


@app.put("/api/v1/tasks/{task_id}", response_model=Task)
def update_task(task_id: str, payload: TaskParams, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.UPDATE_TASK, ResourceRef.task(task_id))
    return services.repository.update_task(task_id, payload)


@app.delete("/api/v1/tasks/{task_id}", status_code=204)
def delete_task(task_id: str, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.DELETE_TASK, ResourceRef.task(task_id))
    services.repository.delete_task(task_id)


# Notes and blocks (whole-list replace)
@app.put("/api/v1/tasks/{task_id}/notes", response_model=Task)
def update_notes(task_id: str, payload: NotesUpdate, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.UPDATE_NOTES, ResourceRef.task(task_id))
    return services.repository.update_notes(task_id, payload.notes)


@app.put("/api/v1/tasks/{task_id}/blocks", response_model=Task)
def update_blocks(task_id: str, payload: BlocksUpdate, user: Optional[User] = Depends(get_principal), services: Services = Depends(get_services)):
    services.engine.require(_principal_id(user), Action.UPDATE_BLOCKS, ResourceRef.task(task_id))
    return services.repository.update_blocks(task_id, payload.blocks)


# Root
@app.get("/")
def read_root():
    return {"message": "Agility Backend API"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
