"""
Database Schemas for the Portfolio API

Portfolio documents live in the ``portfolio`` collection, users in ``users``.
Documents are stored with camelCase keys; the models below expose snake_case
attributes with camelCase aliases.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # Unknown keys pass through untouched.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


# Portfolio content
class Profile(CamelModel):
    name: str
    email: Optional[str] = None
    location: Optional[str] = None
    github: Optional[str] = None
    linkedin: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = ""


class Skill(CamelModel):
    name: str
    level: Optional[str] = None
    rating: Optional[float] = None


class Project(CamelModel):
    title: str
    description: str = ""
    repo_url: Optional[str] = ""
    demo_url: Optional[str] = ""
    tech_stack: List[str] = []
    image_url: Optional[str] = None


class Experience(CamelModel):
    company: str
    role: str
    duration: Optional[str] = None
    details: Optional[str] = None


class Education(CamelModel):
    degree: str
    institution: str
    year: Optional[str] = None


class Certification(CamelModel):
    title: str
    year: Optional[str] = None
    image_url: Optional[str] = None


class UISettings(CamelModel):
    base_rem: float = 1
    section_rem: Dict[str, float] = {}


class PortfolioDocument(CamelModel):
    owner_id: str
    type: str = "portfolio"
    profile: Profile
    skills: List[Skill] = []
    projects: List[Project] = []
    experience: List[Experience] = []
    education: List[Education] = []
    certifications: List[Certification] = []
    resume_pdf_url: Optional[str] = ""
    ui_settings: UISettings = Field(default_factory=UISettings)

    @field_validator("owner_id")
    @classmethod
    def owner_id_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("ownerId must not be empty")
        return v

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class PortfolioUpdate(CamelModel):
    """Partial update: only the keys the caller sent are applied."""
    owner_id: Optional[str] = None
    type: Optional[str] = None
    profile: Optional[Profile] = None
    skills: Optional[List[Skill]] = None
    projects: Optional[List[Project]] = None
    experience: Optional[List[Experience]] = None
    education: Optional[List[Education]] = None
    certifications: Optional[List[Certification]] = None
    resume_pdf_url: Optional[str] = None
    ui_settings: Optional[UISettings] = None

    def to_partial(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")


# Auth
class User(BaseModel):
    username: str
    email: str
    password_hash: str
    role: str = Field(default="customer")
    created_at: datetime = Field(default_factory=datetime.utcnow)


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class RegisterRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: str = "customer"
