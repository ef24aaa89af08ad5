# app/models.py
"""
Archival Lifecycle Database Models

Tables:
- User: Facilitators and storytellers
- Project: A family's story-collection workspace (active or archived)
- ProjectRole: Membership of a user on a project
- Subscription: Billing record that keeps a project active
- Invitation: Pending invitations to join a project
- Chapter: Named grouping used to organize stories
- Story: A recorded story with transcript and media references
- Interaction: Facilitator comments and follow-up questions on a story
- ChapterSummary: Generated per-chapter summary for a project
- ExportRequest: An export job, its durable progress and its artifact reference
"""

from enum import Enum
import uuid

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.database import Base
from app.utils.time import utcnow


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class ProjectStatus(str, Enum):
    """Project lifecycle state."""
    ACTIVE = "active"
    ARCHIVED = "archived"


class ProjectRoleType(str, Enum):
    """Role a user holds on a project."""
    FACILITATOR = "facilitator"
    CO_FACILITATOR = "co_facilitator"
    STORYTELLER = "storyteller"


class ExportStatus(str, Enum):
    """
    Export request state machine.

    queued -> processing -> ready -> expired
                         -> failed
    """
    QUEUED = "queued"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"
    EXPIRED = "expired"


# Written by releases before the ready/expired split; treated as finished
LEGACY_COMPLETED_STATUS = "completed"

IN_FLIGHT_EXPORT_STATUSES = (ExportStatus.QUEUED.value, ExportStatus.PROCESSING.value)
TERMINAL_EXPORT_STATUSES = (
    ExportStatus.READY.value,
    ExportStatus.FAILED.value,
    ExportStatus.EXPIRED.value,
    LEGACY_COMPLETED_STATUS,
)


class ExportFormat(str, Enum):
    """Artifact shape. `zip` and `json` are accepted as legacy aliases."""
    ARCHIVE = "archive"
    DOCUMENT = "document"

    @classmethod
    def parse(cls, value: "str | ExportFormat") -> "ExportFormat":
        if isinstance(value, cls):
            return value
        aliases = {"zip": cls.ARCHIVE, "json": cls.DOCUMENT}
        normalized = str(value).lower().strip()
        if normalized in aliases:
            return aliases[normalized]
        return cls(normalized)

    @property
    def content_type(self) -> str:
        return "application/zip" if self is ExportFormat.ARCHIVE else "application/json"

    @property
    def extension(self) -> str:
        return "zip" if self is ExportFormat.ARCHIVE else "json"


# -----------------------------------------------------------------------------
# Users & projects
# -----------------------------------------------------------------------------

class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Project(Base):
    """
    A family's story-collection workspace.

    Archived projects are read-mostly; retention treats them separately
    from active projects.
    """
    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=ProjectStatus.ACTIVE.value)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    roles = relationship("ProjectRole", back_populates="project")
    stories = relationship("Story", back_populates="project")

    __table_args__ = (
        Index("ix_projects_status_updated_at", "status", "updated_at"),
    )


class ProjectRole(Base):
    __tablename__ = "project_roles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(32), nullable=False, default=ProjectRoleType.FACILITATOR.value)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    project = relationship("Project", back_populates="roles")
    user = relationship("User")


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False, index=True)
    status = Column(String(32), nullable=False, default="active")
    current_period_end = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Invitation(Base):
    __tablename__ = "invitations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default=ProjectRoleType.FACILITATOR.value)
    created_at = Column(DateTime, nullable=False, default=utcnow)


# -----------------------------------------------------------------------------
# Story content
# -----------------------------------------------------------------------------

class Chapter(Base):
    """Named grouping of stories (shared prompt library chapters)."""
    __tablename__ = "chapters"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    order_index = Column(Integer, nullable=False, default=0)


class Story(Base):
    """
    A recorded story.

    audio_uri / photo_uri are blob store keys, e.g. audio/{project_id}/{story_id}.mp3
    """
    __tablename__ = "stories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False, index=True)
    chapter_id = Column(Uuid, ForeignKey("chapters.id"), nullable=True, index=True)
    title = Column(String(255), nullable=True)
    transcript = Column(Text, nullable=True)
    audio_uri = Column(String(512), nullable=True)
    photo_uri = Column(String(512), nullable=True)
    duration = Column(Float, nullable=True)  # seconds
    recording_device = Column(String(255), nullable=True)
    location = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="stories")
    chapter = relationship("Chapter")
    interactions = relationship("Interaction", back_populates="story")


class Interaction(Base):
    __tablename__ = "interactions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    story_id = Column(Uuid, ForeignKey("stories.id"), nullable=False, index=True)
    facilitator_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    type = Column(String(32), nullable=False, default="comment")  # comment, followup
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    story = relationship("Story", back_populates="interactions")
    facilitator = relationship("User")


class ChapterSummary(Base):
    __tablename__ = "chapter_summaries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False, index=True)
    chapter_id = Column(Uuid, ForeignKey("chapters.id"), nullable=True)
    summary = Column(Text, nullable=False)
    story_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    chapter = relationship("Chapter")


# -----------------------------------------------------------------------------
# Exports
# -----------------------------------------------------------------------------

class ExportRequest(Base):
    """
    An export job and its artifact.

    download_url and expires_at are set only while status == ready.
    storage_key outlives expiry so retention can still remove the blob.
    Progress columns are written by the pipeline at every step.
    """
    __tablename__ = "export_requests"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False, index=True)
    facilitator_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=ExportStatus.QUEUED.value)
    format = Column(String(20), nullable=False, default=ExportFormat.ARCHIVE.value)
    options = Column(JSON, nullable=True)

    # Artifact
    storage_key = Column(String(512), nullable=True)
    download_url = Column(String(512), nullable=True)
    expires_at = Column(DateTime, nullable=True)
    size_bytes = Column(BigInteger, nullable=True)

    # Durable progress
    progress = Column(Integer, nullable=False, default=0)
    current_step = Column(String(64), nullable=True)
    current_step_index = Column(Integer, nullable=False, default=0)
    total_steps = Column(Integer, nullable=False, default=7)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_export_requests_guard", "project_id", "facilitator_id", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ExportRequest {self.id} {self.status}>"
