# app/services/export/snapshots.py
"""
Detached, read-only copies of the rows an export is built from.

The archive builder works only on these, so it can run off the event loop
without touching the ORM session.
"""

from dataclasses import dataclass, field
from datetime import datetime

from app.models import (
    ChapterSummary,
    Interaction,
    Project,
    ProjectRoleType,
    ProjectStatus,
    Story,
)


@dataclass(frozen=True)
class MemberSnapshot:
    id: str
    name: str
    email: str
    role: str
    joined_at: datetime | None = None


@dataclass(frozen=True)
class ProjectSnapshot:
    id: str
    name: str
    description: str | None
    status: str
    created_at: datetime
    updated_at: datetime
    facilitators: list[MemberSnapshot] = field(default_factory=list)
    storyteller: MemberSnapshot | None = None

    @property
    def is_archived(self) -> bool:
        return self.status == ProjectStatus.ARCHIVED.value

    @classmethod
    def from_model(cls, project: Project) -> "ProjectSnapshot":
        facilitators = []
        storyteller = None
        for role in project.roles:
            member = MemberSnapshot(
                id=str(role.user.id) if role.user else str(role.user_id),
                name=role.user.name if role.user else "",
                email=role.user.email if role.user else "",
                role=role.role,
                joined_at=role.created_at,
            )
            if role.role == ProjectRoleType.STORYTELLER.value:
                storyteller = member
            else:
                facilitators.append(member)

        return cls(
            id=str(project.id),
            name=project.name,
            description=project.description,
            status=project.status,
            created_at=project.created_at,
            updated_at=project.updated_at,
            facilitators=facilitators,
            storyteller=storyteller,
        )


@dataclass(frozen=True)
class StorySnapshot:
    id: str
    title: str | None
    transcript: str | None
    audio_uri: str | None
    photo_uri: str | None
    created_at: datetime
    updated_at: datetime | None = None
    chapter_id: str | None = None
    chapter_name: str | None = None
    duration: float | None = None
    recording_device: str | None = None
    location: str | None = None

    @property
    def display_title(self) -> str:
        return self.title or f"Story {self.id}"

    @classmethod
    def from_model(cls, story: Story) -> "StorySnapshot":
        return cls(
            id=str(story.id),
            title=story.title,
            transcript=story.transcript,
            audio_uri=story.audio_uri,
            photo_uri=story.photo_uri,
            created_at=story.created_at,
            updated_at=story.updated_at,
            chapter_id=str(story.chapter_id) if story.chapter_id else None,
            chapter_name=story.chapter.name if story.chapter else None,
            duration=story.duration,
            recording_device=story.recording_device,
            location=story.location,
        )


@dataclass(frozen=True)
class InteractionSnapshot:
    id: str
    story_id: str
    facilitator_name: str | None
    type: str
    content: str
    created_at: datetime

    @classmethod
    def from_model(cls, interaction: Interaction) -> "InteractionSnapshot":
        return cls(
            id=str(interaction.id),
            story_id=str(interaction.story_id),
            facilitator_name=interaction.facilitator.name if interaction.facilitator else None,
            type=interaction.type,
            content=interaction.content,
            created_at=interaction.created_at,
        )


@dataclass(frozen=True)
class ChapterSummarySnapshot:
    id: str
    chapter_id: str | None
    chapter_name: str | None
    summary: str
    story_count: int
    created_at: datetime

    @classmethod
    def from_model(cls, summary: ChapterSummary) -> "ChapterSummarySnapshot":
        return cls(
            id=str(summary.id),
            chapter_id=str(summary.chapter_id) if summary.chapter_id else None,
            chapter_name=summary.chapter.name if summary.chapter else None,
            summary=summary.summary,
            story_count=summary.story_count,
            created_at=summary.created_at,
        )


@dataclass(frozen=True)
class ExportSnapshot:
    """Everything one export is built from."""

    project: ProjectSnapshot
    stories: list[StorySnapshot] = field(default_factory=list)
    interactions: list[InteractionSnapshot] = field(default_factory=list)
    chapter_summaries: list[ChapterSummarySnapshot] = field(default_factory=list)

    def interaction_count_for(self, story_id: str) -> int:
        return sum(1 for i in self.interactions if i.story_id == story_id)
