"""
Data models for the Agility backend

Collections:
- users    -> User (keyed by the identity provider subject)
- projects -> Project
- team     -> Membership (one row per project/user pair)
- sprints  -> Sprint
- tasks    -> Task (notes and blocks live on the task document)

Documents carry their key in "_id"; the models expose it as "id".
"""

from pydantic import BaseModel, Field, EmailStr, field_validator
from typing import Optional, List, Literal
from datetime import datetime, timezone

# Roles within a project
Role = Literal["ProjectLead", "Manager", "Developer"]

PROJECT_LEAD: Role = "ProjectLead"
MANAGER: Role = "Manager"
DEVELOPER: Role = "Developer"


def from_document(model, doc: dict):
    """Build a model from a stored document, exposing _id as a string id."""
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    return model.model_validate(data)


# Users
class User(BaseModel):
    id: str
    name: str = ""
    email: str = ""
    profile_image_url: str = ""


# Projects and memberships
class Project(BaseModel):
    id: str
    name: str
    description: Optional[str] = None


class Membership(BaseModel):
    project_id: str
    user_id: str
    role: Role


class TeamMember(BaseModel):
    user: User
    role: Role


# Sprints and tasks
class HasDue(BaseModel):
    """Normalizes "due" to what the store keeps: UTC, millisecond precision.

    Naive values are taken as UTC.
    """

    @field_validator("due", check_fields=False)
    @classmethod
    def normalize_due(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is None:
            return v
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        else:
            v = v.astimezone(timezone.utc)
        return v.replace(microsecond=v.microsecond // 1000 * 1000)


class Sprint(HasDue):
    id: str
    project_id: str
    header: str
    due: Optional[datetime] = None
    description: Optional[str] = None


class Task(HasDue):
    id: str
    sprint_id: str
    header: str
    description: Optional[str] = None
    due: Optional[datetime] = None
    notes: List[str] = []
    blocks: List[str] = []


# Request payloads
class ProjectParams(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)


class SprintParams(HasDue):
    header: str = Field(..., min_length=1, max_length=200)
    due: Optional[datetime] = None
    description: Optional[str] = Field(None, max_length=5000)


class TaskParams(HasDue):
    header: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    due: Optional[datetime] = None
    notes: List[str] = []
    blocks: List[str] = []


class MemberAdd(BaseModel):
    email: EmailStr
    role: Role = DEVELOPER


class MemberUpdate(BaseModel):
    user_id: str
    role: Role


class NotesUpdate(BaseModel):
    notes: List[str]


class BlocksUpdate(BaseModel):
    blocks: List[str]


class TokenRequest(BaseModel):
    token: str
