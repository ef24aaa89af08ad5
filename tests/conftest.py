# tests/conftest.py
"""
Pytest configuration and fixtures.

Each test gets its own file-backed SQLite database and a local blob store
rooted in tmp_path. File-backed (not :memory:) so background export tasks
can open their own sessions against the same data.
"""

import os
import uuid
from dataclasses import dataclass
from datetime import timedelta

import pytest

# Set test environment before app modules read it
os.environ.setdefault("TESTING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("STORAGE_PROVIDER", "local")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("EMAIL_ENABLED", "false")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.database import Base  # noqa: E402
from app.models import (  # noqa: E402
    Chapter,
    ChapterSummary,
    Interaction,
    Project,
    ProjectRole,
    ProjectRoleType,
    ProjectStatus,
    Story,
    User,
)
from app.storage.local_provider import LocalStorageProvider  # noqa: E402
from app.utils.time import utcnow  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'lifecycle.db'}",
        future=True,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(base_path=str(tmp_path / "storage"))


@pytest.fixture(autouse=True)
def reset_process_state():
    """Analytics buffer, running export tasks, storage singleton, caches."""
    from app.routers.exports import invalidate_export_analytics_cache
    from app.services.analytics import reset_events
    from app.services.export.export_job_manager import ExportJobManager
    from app.storage.factory import reset_storage_provider

    reset_events()
    ExportJobManager._running_jobs.clear()
    reset_storage_provider()
    invalidate_export_analytics_cache()
    yield
    reset_events()
    ExportJobManager._running_jobs.clear()
    reset_storage_provider()


# -----------------------------------------------------------------------------
# Seed data
# -----------------------------------------------------------------------------


@dataclass
class SeededProject:
    project: Project
    facilitator: User
    storyteller: User
    outsider: User
    chapter: Chapter
    stories: list
    interactions: list
    summaries: list

    @property
    def project_id(self) -> str:
        return str(self.project.id)

    @property
    def facilitator_id(self) -> str:
        return str(self.facilitator.id)


def seed_project(
    db,
    storage=None,
    *,
    status: str = ProjectStatus.ACTIVE.value,
    name: str = "Grandma Rose",
    with_media: bool = False,
    age_days: int = 0,
) -> SeededProject:
    """
    A project with one facilitator, one storyteller, two stories (one in a
    chapter, one without), two interactions and one chapter summary.
    """
    created = utcnow() - timedelta(days=age_days)
    suffix = uuid.uuid4().hex[:8]

    facilitator = User(name="Alex Facilitator", email=f"alex-{suffix}@example.com", created_at=created)
    storyteller = User(name="Rose Storyteller", email=f"rose-{suffix}@example.com", created_at=created)
    outsider = User(name="Sam Outsider", email=f"sam-{suffix}@example.com", created_at=created)
    chapter = Chapter(name="Early Years", order_index=1)
    project = Project(
        name=name,
        description="Stories from Grandma Rose",
        status=status,
        created_at=created,
        updated_at=created,
    )
    db.add_all([facilitator, storyteller, outsider, chapter, project])
    db.flush()

    db.add_all(
        [
            ProjectRole(
                project_id=project.id,
                user_id=facilitator.id,
                role=ProjectRoleType.FACILITATOR.value,
                created_at=created,
            ),
            ProjectRole(
                project_id=project.id,
                user_id=storyteller.id,
                role=ProjectRoleType.STORYTELLER.value,
                created_at=created,
            ),
        ]
    )

    story_one = Story(
        project_id=project.id,
        chapter_id=chapter.id,
        title="My First Home",
        transcript="We lived by the river.",
        duration=120.5,
        recording_device="iPhone",
        created_at=created,
        updated_at=created,
    )
    story_two = Story(
        project_id=project.id,
        chapter_id=None,
        title="The Wedding",
        transcript="It rained all day.",
        created_at=created + timedelta(minutes=5),
        updated_at=created + timedelta(minutes=5),
    )
    db.add_all([story_one, story_two])
    db.flush()

    if with_media:
        story_one.audio_uri = f"audio/{project.id}/{story_one.id}.mp3"
        story_one.photo_uri = f"images/{project.id}/{story_one.id}.jpg"
        if storage is not None:
            storage.upload(story_one.audio_uri, b"ID3-audio-bytes")
            storage.upload(story_one.photo_uri, b"\xff\xd8\xff-jpeg-bytes")

    interactions = [
        Interaction(
            story_id=story_one.id,
            facilitator_id=facilitator.id,
            type="comment",
            content="What was the river called?",
            created_at=created + timedelta(minutes=10),
        ),
        Interaction(
            story_id=story_two.id,
            facilitator_id=facilitator.id,
            type="followup",
            content="Who was the best man?",
            created_at=created + timedelta(minutes=11),
        ),
    ]
    summaries = [
        ChapterSummary(
            project_id=project.id,
            chapter_id=chapter.id,
            summary="Childhood by the river.",
            story_count=1,
            created_at=created + timedelta(minutes=12),
        )
    ]
    db.add_all(interactions + summaries)
    db.commit()

    return SeededProject(
        project=project,
        facilitator=facilitator,
        storyteller=storyteller,
        outsider=outsider,
        chapter=chapter,
        stories=[story_one, story_two],
        interactions=interactions,
        summaries=summaries,
    )


@pytest.fixture
def seeded(db, storage) -> SeededProject:
    return seed_project(db, storage)


@pytest.fixture
def make_project(db, storage):
    """Seed additional projects: make_project(status=..., age_days=..., with_media=...)."""

    def _make(**kwargs) -> SeededProject:
        return seed_project(db, storage, **kwargs)

    return _make
