# app/services/export/archive_builder.py
"""
Archive builder: turns an export snapshot into a downloadable artifact.

Two shapes:
- archive: a deflated zip with one folder per story, grouped by chapter
- document: a single JSON document with the same content, no media bytes

Layout of an archive:
    manifest.json, README.txt                 (includeMetadata)
    metadata/export-info.json                 (includeMetadata)
    metadata/project-info.json                (includeMetadata)
    data/stories.json
    data/interactions.json                    (includeInteractions, non-empty)
    data/chapter-summaries.json               (includeChapterSummaries, non-empty)
    stories/<chapter>/<title>/metadata.json
    stories/<chapter>/<title>/transcript.txt  (includeTranscripts, present)
    stories/<chapter>/<title>/audio.<ext>     (includeAudio, downloaded)
    stories/<chapter>/<title>/photo.<ext>     (includePhotos, downloaded)
    stories/uncategorized/<title>/...         (stories without a chapter)

Building never touches the database. Media is pulled through a fetch
callable; a fetch that fails or finds nothing only drops that one file.
"""

import io
import json
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from app.constants import ExportDefaults, FileNames
from app.models import ExportFormat
from app.services.export.options import ExportOptions
from app.services.export.snapshots import ExportSnapshot, ProjectSnapshot, StorySnapshot
from app.utils.file_names import file_extension, sanitize_file_name
from app.utils.time import isoformat, utcnow

logger = logging.getLogger(__name__)

MediaFetcher = Callable[[str], bytes | None]
ProgressCallback = Callable[[float], None]

MANIFEST_PATH = "manifest.json"
README_PATH = "README.txt"
EXPORT_INFO_PATH = "metadata/export-info.json"
PROJECT_INFO_PATH = "metadata/project-info.json"
STORIES_DATA_PATH = "data/stories.json"
INTERACTIONS_DATA_PATH = "data/interactions.json"
SUMMARIES_DATA_PATH = "data/chapter-summaries.json"


# -----------------------------------------------------------------------------
# Serialization
# -----------------------------------------------------------------------------


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return isoformat(value)
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json_bytes(payload: Any) -> bytes:
    """Pretty-printed UTF-8 JSON. Key order is the insertion order of the dicts."""
    return json.dumps(
        payload,
        indent=ExportDefaults.JSON_INDENT,
        default=_json_default,
        ensure_ascii=False,
    ).encode("utf-8")


# -----------------------------------------------------------------------------
# Result types
# -----------------------------------------------------------------------------


@dataclass
class ArchiveEntry:
    """One file in the artifact layout."""

    path: str
    type: str  # JSON, Text, Audio, Image
    description: str
    content: bytes | None = None  # None for entries described but not materialized
    size: int | None = None

    def manifest_dict(self) -> dict[str, Any]:
        if self.size is not None:
            size = self.size
        else:
            size = len(self.content) if self.content is not None else 0
        return {"path": self.path, "type": self.type, "size": size, "description": self.description}


@dataclass
class ExportArtifact:
    """Built export bytes plus what went into them."""

    content: bytes
    content_type: str
    format: ExportFormat
    manifest: dict[str, Any]
    file_count: int
    story_count: int
    interaction_count: int
    chapter_summary_count: int
    skipped_files: list[str] = field(default_factory=list)

    @property
    def size_bytes(self) -> int:
        return len(self.content)


@dataclass
class StoryFolder:
    story: StorySnapshot
    path: str  # stories/<chapter>/<title>


# -----------------------------------------------------------------------------
# Layout helpers
# -----------------------------------------------------------------------------


def plan_story_folders(stories: list[StorySnapshot]) -> list[StoryFolder]:
    """
    Assign every story a unique folder.

    Titles that sanitize to the same segment within one chapter get a
    numeric suffix (_2, _3, ...) in story order, skipping suffixes that
    another title already produces.
    """
    taken: set[str] = set()
    folders = []
    for story in stories:
        chapter_segment = (
            sanitize_file_name(story.chapter_name) if story.chapter_name else FileNames.UNCATEGORIZED
        )
        base = f"stories/{chapter_segment}/{sanitize_file_name(story.display_title)}"
        path = base
        suffix = 1
        while path in taken:
            suffix += 1
            path = f"{base}_{suffix}"
        taken.add(path)
        folders.append(StoryFolder(story=story, path=path))
    return folders


def list_folders(story_folders: list[StoryFolder], options: ExportOptions) -> list[str]:
    """Every folder in the archive layout, parents before children."""
    folders = ["data"]
    if options.include_metadata:
        folders.append("metadata")
    folders.append("stories")

    chapter_folders: list[str] = []
    for story_folder in story_folders:
        parent = story_folder.path.rsplit("/", 1)[0]
        if parent not in chapter_folders:
            chapter_folders.append(parent)
    folders.extend(chapter_folders)
    folders.extend(sf.path for sf in story_folders)
    return folders


def count_chapters(snapshot: ExportSnapshot) -> int:
    """Distinct chapters among the exported stories."""
    return len({s.chapter_id or s.chapter_name for s in snapshot.stories if s.chapter_id or s.chapter_name})


def _project_summary(project: ProjectSnapshot) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "id": project.id,
        "name": project.name,
        "description": project.description or "",
        "status": project.status,
        "createdAt": project.created_at,
    }
    if project.is_archived:
        summary["archivedAt"] = project.updated_at
    summary["facilitators"] = [
        {"id": f.id, "name": f.name, "email": f.email, "role": f.role} for f in project.facilitators
    ]
    if project.storyteller:
        summary["storyteller"] = {
            "id": project.storyteller.id,
            "name": project.storyteller.name,
            "email": project.storyteller.email,
        }
    return summary


def build_manifest(
    snapshot: ExportSnapshot,
    options: ExportOptions,
    *,
    export_id: str,
    exported_at: datetime,
    exported_by: str,
    total_size: int,
    folders: list[str],
    files: list[ArchiveEntry],
) -> dict[str, Any]:
    """
    The manifest embedded in both artifact shapes.

    totalSize is the project's storage footprint, not the artifact size.
    """
    return {
        "projectInfo": _project_summary(snapshot.project),
        "exportInfo": {
            "exportId": export_id,
            "exportedAt": exported_at,
            "exportedBy": exported_by,
            "exportVersion": ExportDefaults.EXPORT_VERSION,
            "dataFormat": ExportDefaults.DATA_FORMAT,
            "options": options.to_dict(),
            "totalStories": len(snapshot.stories),
            "totalInteractions": len(snapshot.interactions),
            "totalChapters": count_chapters(snapshot),
            "totalFiles": len(files),
            "totalSize": total_size,
        },
        "structure": {
            "folders": folders,
            "files": [entry.manifest_dict() for entry in files],
        },
    }


def generate_readme(project: ProjectSnapshot, manifest: dict[str, Any]) -> str:
    """Human-readable summary placed at the archive root."""
    info = manifest["exportInfo"]
    structure = manifest["structure"]
    exported_at = info["exportedAt"]
    exported_on = exported_at.strftime("%Y-%m-%d") if isinstance(exported_at, datetime) else str(exported_at)

    lines = [
        f"# {project.name} - Family Story Archive",
        "",
        f'This archive contains the family story collection for the project "{project.name}".',
        "",
        "## Project Information",
        f"- Project ID: {project.id}",
        f"- Status: {project.status}",
        f"- Created: {project.created_at.strftime('%Y-%m-%d')}",
        f"- Exported: {exported_on}",
        "",
        "## Archive Contents",
        f"- Total Stories: {info['totalStories']}",
        f"- Total Interactions: {info['totalInteractions']}",
        f"- Total Chapters: {info['totalChapters']}",
        f"- Total Files: {info['totalFiles']}",
        "",
        "## Folder Structure",
        *[f"- {folder}/" for folder in structure["folders"]],
        "",
        "## Files Included",
        *[f"- {f['path']} ({f['type']})" for f in structure["files"]],
        "",
        "## How to Use This Archive",
        "1. Extract all files to a folder on your computer",
        "2. Open the 'data' folder to find structured JSON files with all story data",
        "3. Each story has its own folder under 'stories', grouped by chapter",
        "4. A story folder holds its metadata, transcript, audio recording and photo",
        "5. The manifest.json file contains detailed metadata about this export",
        "",
        "## Data Preservation",
        "This archive is designed to preserve your family stories for future generations.",
        "All files are in standard formats that can be opened with common software.",
        "",
        f"Generated by Saga Family Biography Platform (export format {ExportDefaults.DATA_FORMAT})",
    ]
    return "\n".join(lines)


# -----------------------------------------------------------------------------
# Builder
# -----------------------------------------------------------------------------


class ArchiveBuilder:
    """
    Builds one export artifact from a snapshot.

    Usage:
        builder = ArchiveBuilder(snapshot, options, export_id=..., exported_by=..., fetch_media=fetch)
        artifact = builder.build()
    """

    def __init__(
        self,
        snapshot: ExportSnapshot,
        options: ExportOptions,
        *,
        export_id: str,
        exported_by: str,
        exported_at: datetime | None = None,
        total_size: int = 0,
        fetch_media: MediaFetcher | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self.snapshot = snapshot
        self.options = options
        self.export_id = export_id
        self.exported_by = exported_by
        self.exported_at = exported_at or utcnow()
        self.total_size = total_size
        self._fetch_media = fetch_media
        self._on_progress = on_progress
        self.skipped_files: list[str] = []
        self._media_bytes = 0

    def build(self) -> ExportArtifact:
        if self.options.format is ExportFormat.ARCHIVE:
            content, manifest, file_count = self._build_archive()
        else:
            content, manifest, file_count = self._build_document()

        self._report(1.0)

        logger.info(
            f"Built {self.options.format.value} export for project {self.snapshot.project.id}: "
            f"{file_count} files, {len(content)} bytes, {len(self.skipped_files)} skipped",
            extra={
                "event": "export_built",
                "export_id": self.export_id,
                "project_id": self.snapshot.project.id,
                "size_bytes": len(content),
                "count": file_count,
            },
        )

        return ExportArtifact(
            content=content,
            content_type=self.options.format.content_type,
            format=self.options.format,
            manifest=manifest,
            file_count=file_count,
            story_count=len(self.snapshot.stories),
            interaction_count=len(self.snapshot.interactions),
            chapter_summary_count=len(self.snapshot.chapter_summaries),
            skipped_files=list(self.skipped_files),
        )

    # -- progress / media -----------------------------------------------------

    def _report(self, fraction: float) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(min(max(fraction, 0.0), 1.0))
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    def _fetch(self, uri: str, story_id: str, kind: str) -> bytes | None:
        """Fetch one media blob. Failures are logged and the file is skipped."""
        if self._fetch_media is None:
            return None
        try:
            data = self._fetch_media(uri)
        except Exception as e:
            logger.warning(
                f"Failed to download {kind} file for story {story_id}: {e}",
                extra={"event": "media_download_failed", "export_id": self.export_id, "key": uri},
            )
            self.skipped_files.append(uri)
            return None
        if data is None:
            logger.warning(
                f"{kind.capitalize()} file for story {story_id} not found: {uri}",
                extra={"event": "media_missing", "export_id": self.export_id, "key": uri},
            )
            self.skipped_files.append(uri)
            return None
        self._media_bytes += len(data)
        return data

    # -- story entries --------------------------------------------------------

    def _story_entries(
        self,
        story_folders: list[StoryFolder],
        materialize_media: bool,
    ) -> tuple[list[ArchiveEntry], list[dict[str, Any]]]:
        """Per-story files plus the data/stories.json records."""
        entries: list[ArchiveEntry] = []
        records: list[dict[str, Any]] = []
        options = self.options
        total = len(story_folders)

        for index, story_folder in enumerate(story_folders, start=1):
            story = story_folder.story
            folder = story_folder.path
            title = story.display_title

            record: dict[str, Any] = {
                "id": story.id,
                "title": title,
                "transcript": story.transcript if options.include_transcripts else None,
                "createdAt": story.created_at,
                "chapterName": story.chapter_name,
                "folderPath": folder,
                "metadata": {
                    "duration": story.duration,
                    "recordingDevice": story.recording_device,
                    "location": story.location,
                    "fileSize": 0,
                    "audioFormat": file_extension(story.audio_uri) if story.audio_uri else None,
                    "photoFormat": file_extension(story.photo_uri) if story.photo_uri else None,
                },
            }

            media = (
                ("audio", "Audio", "Audio recording", story.audio_uri, options.include_audio),
                ("photo", "Image", "Photo", story.photo_uri, options.include_photos),
            )
            for kind, entry_type, label, uri, wanted in media:
                if not (wanted and uri):
                    continue
                path = f"{folder}/{kind}.{file_extension(uri)}"
                if materialize_media:
                    data = self._fetch(uri, story.id, kind)
                    if data is None:
                        continue
                    entries.append(ArchiveEntry(path, entry_type, f"{label} for story: {title}", content=data))
                    record["metadata"]["fileSize"] += len(data)
                else:
                    entries.append(ArchiveEntry(path, entry_type, f"{label} for story: {title}", size=0))
                record[f"{kind}File"] = path

            if options.include_transcripts and story.transcript:
                path = f"{folder}/transcript.txt"
                entries.append(
                    ArchiveEntry(
                        path,
                        "Text",
                        f"Transcript for story: {title}",
                        content=story.transcript.encode("utf-8"),
                    )
                )
                record["transcriptFile"] = path

            story_metadata = {
                "id": story.id,
                "title": story.title,
                "createdAt": story.created_at,
                "updatedAt": story.updated_at,
                "chapterName": story.chapter_name,
                "duration": story.duration,
                "recordingDevice": story.recording_device,
                "location": story.location,
                "hasAudio": bool(story.audio_uri),
                "hasPhoto": bool(story.photo_uri),
                "transcriptLength": len(story.transcript or ""),
                "interactionCount": self.snapshot.interaction_count_for(story.id),
            }
            metadata_path = f"{folder}/metadata.json"
            entries.append(
                ArchiveEntry(
                    metadata_path,
                    "JSON",
                    f"Metadata for story: {title}",
                    content=to_json_bytes(story_metadata),
                )
            )
            record["metadataFile"] = metadata_path

            records.append(record)
            self._report(index / total * 0.9)

        return entries, records

    def _interaction_records(self) -> list[dict[str, Any]]:
        return [
            {
                "id": i.id,
                "storyId": i.story_id,
                "facilitatorName": i.facilitator_name,
                "type": i.type,
                "content": i.content,
                "createdAt": i.created_at,
            }
            for i in self.snapshot.interactions
        ]

    def _summary_records(self) -> list[dict[str, Any]]:
        return [
            {
                "id": s.id,
                "chapterName": s.chapter_name,
                "summary": s.summary,
                "storyCount": s.story_count,
                "createdAt": s.created_at,
            }
            for s in self.snapshot.chapter_summaries
        ]

    def _data_entries(self, story_records: list[dict[str, Any]]) -> list[ArchiveEntry]:
        entries = [
            ArchiveEntry(
                STORIES_DATA_PATH,
                "JSON",
                "Structured data for all stories",
                content=to_json_bytes(story_records),
            )
        ]
        if self.options.include_interactions and self.snapshot.interactions:
            entries.append(
                ArchiveEntry(
                    INTERACTIONS_DATA_PATH,
                    "JSON",
                    "All facilitator interactions and comments",
                    content=to_json_bytes(self._interaction_records()),
                )
            )
        if self.options.include_chapter_summaries and self.snapshot.chapter_summaries:
            entries.append(
                ArchiveEntry(
                    SUMMARIES_DATA_PATH,
                    "JSON",
                    "Generated chapter summaries",
                    content=to_json_bytes(self._summary_records()),
                )
            )
        return entries

    # -- metadata files -------------------------------------------------------

    def _export_info(self, total_files: int) -> dict[str, Any]:
        chapters = []
        for story in self.snapshot.stories:
            if story.chapter_name and story.chapter_name not in chapters:
                chapters.append(story.chapter_name)
        date_range = self.options.date_range
        return {
            "exportId": self.export_id,
            "exportedAt": self.exported_at,
            "exportVersion": ExportDefaults.EXPORT_VERSION,
            "options": self.options.to_dict(),
            "statistics": {
                "totalStories": len(self.snapshot.stories),
                "totalInteractions": len(self.snapshot.interactions),
                "totalChapterSummaries": len(self.snapshot.chapter_summaries),
                "totalFiles": total_files,
                "estimatedSize": self._media_bytes,
                "chaptersIncluded": chapters,
                "dateRange": date_range.to_dict() if date_range else None,
            },
            "compatibility": {
                "minimumViewerVersion": ExportDefaults.MINIMUM_VIEWER_VERSION,
                "recommendedViewerVersion": ExportDefaults.RECOMMENDED_VIEWER_VERSION,
                "dataFormat": ExportDefaults.DATA_FORMAT,
            },
        }

    def _project_info(self) -> dict[str, Any]:
        project = self.snapshot.project
        storyteller = project.storyteller
        return {
            "id": project.id,
            "name": project.name,
            "description": project.description,
            "status": project.status,
            "createdAt": project.created_at,
            "updatedAt": project.updated_at,
            "facilitators": [
                {"id": f.id, "name": f.name, "email": f.email, "role": f.role, "joinedAt": f.joined_at}
                for f in project.facilitators
            ],
            "storyteller": (
                {
                    "id": storyteller.id,
                    "name": storyteller.name,
                    "email": storyteller.email,
                    "joinedAt": storyteller.joined_at,
                }
                if storyteller
                else None
            ),
            "settings": {
                "privacy": "family-only",
                "archivalMode": project.is_archived,
                "exportPermissions": "facilitators-only",
            },
        }

    def _manifest(self, folders: list[str], files: list[ArchiveEntry]) -> dict[str, Any]:
        return build_manifest(
            self.snapshot,
            self.options,
            export_id=self.export_id,
            exported_at=self.exported_at,
            exported_by=self.exported_by,
            total_size=self.total_size,
            folders=folders,
            files=files,
        )

    # -- shapes ---------------------------------------------------------------

    def _build_archive(self) -> tuple[bytes, dict[str, Any], int]:
        story_folders = plan_story_folders(self.snapshot.stories)
        story_entries, story_records = self._story_entries(story_folders, materialize_media=True)
        data_entries = self._data_entries(story_records)
        folders = list_folders(story_folders, self.options)

        leading: list[ArchiveEntry] = []
        manifest_entry = readme_entry = None
        if self.options.include_metadata:
            total_files = len(story_entries) + len(data_entries) + 4
            # Self-describing files are listed with size 0
            manifest_entry = ArchiveEntry(MANIFEST_PATH, "JSON", "Export metadata and structure information", size=0)
            readme_entry = ArchiveEntry(README_PATH, "Text", "Human-readable information about this archive", size=0)
            leading = [
                manifest_entry,
                readme_entry,
                ArchiveEntry(
                    EXPORT_INFO_PATH,
                    "JSON",
                    "Detailed export configuration and statistics",
                    content=to_json_bytes(self._export_info(total_files)),
                ),
                ArchiveEntry(
                    PROJECT_INFO_PATH,
                    "JSON",
                    "Complete project information and settings",
                    content=to_json_bytes(self._project_info()),
                ),
            ]

        all_entries = leading + data_entries + story_entries
        manifest = self._manifest(folders, all_entries)

        if manifest_entry is not None:
            manifest_entry.content = to_json_bytes(manifest)
            readme_entry.content = generate_readme(self.snapshot.project, manifest).encode("utf-8")

        buffer = io.BytesIO()
        with zipfile.ZipFile(
            buffer,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=ExportDefaults.ZIP_COMPRESSION_LEVEL,
        ) as archive:
            for entry in all_entries:
                archive.writestr(entry.path, entry.content or b"")

        return buffer.getvalue(), manifest, len(all_entries)

    def _build_document(self) -> tuple[bytes, dict[str, Any], int]:
        story_folders = plan_story_folders(self.snapshot.stories)
        story_entries, _ = self._story_entries(story_folders, materialize_media=False)
        folders = list_folders(story_folders, self.options)

        files: list[ArchiveEntry] = []
        if self.options.include_metadata:
            files.append(ArchiveEntry(MANIFEST_PATH, "JSON", "Export metadata and structure information", size=0))
        files.append(ArchiveEntry(STORIES_DATA_PATH, "JSON", "Structured data for all stories", size=0))
        if self.options.include_interactions and self.snapshot.interactions:
            files.append(ArchiveEntry(INTERACTIONS_DATA_PATH, "JSON", "All facilitator interactions and comments", size=0))
        if self.options.include_chapter_summaries and self.snapshot.chapter_summaries:
            files.append(ArchiveEntry(SUMMARIES_DATA_PATH, "JSON", "Generated chapter summaries", size=0))
        files.extend(story_entries)

        manifest = self._manifest(folders, files)
        project = self.snapshot.project
        options = self.options

        document = {
            "manifest": manifest,
            "project": {
                "id": project.id,
                "name": project.name,
                "description": project.description,
                "status": project.status,
                "createdAt": project.created_at,
                "facilitators": [
                    {"id": f.id, "name": f.name, "email": f.email, "role": f.role} for f in project.facilitators
                ],
                "storyteller": (
                    {"id": project.storyteller.id, "name": project.storyteller.name, "email": project.storyteller.email}
                    if project.storyteller
                    else None
                ),
            },
            "stories": [
                {
                    "id": story.id,
                    "title": story.title,
                    "transcript": story.transcript if options.include_transcripts else None,
                    "audioUrl": story.audio_uri if options.include_audio else None,
                    "photoUrl": story.photo_uri if options.include_photos else None,
                    "createdAt": story.created_at,
                    "chapterName": story.chapter_name,
                    "metadata": {
                        "duration": story.duration,
                        "recordingDevice": story.recording_device,
                        "location": story.location,
                    },
                }
                for story in self.snapshot.stories
            ],
            "interactions": self._interaction_records() if options.include_interactions else [],
            "chapterSummaries": self._summary_records() if options.include_chapter_summaries else [],
        }

        return to_json_bytes(document), manifest, len(files)


def build_export(
    snapshot: ExportSnapshot,
    options: ExportOptions,
    **kwargs: Any,
) -> ExportArtifact:
    """Build an artifact in one call. See ArchiveBuilder for keyword arguments."""
    return ArchiveBuilder(snapshot, options, **kwargs).build()


# -----------------------------------------------------------------------------
# Verification
# -----------------------------------------------------------------------------


def verify_export_artifact(content: bytes, export_format: ExportFormat, options: ExportOptions) -> list[str]:
    """
    Check that a built artifact opens and carries its required parts.

    Returns a list of problems; empty means the artifact is usable.
    """
    problems: list[str] = []

    if export_format is ExportFormat.DOCUMENT:
        try:
            document = json.loads(content.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            return [f"Document is not valid JSON: {e}"]
        for key in ("manifest", "project", "stories"):
            if key not in document:
                problems.append(f"Document is missing '{key}'")
        return problems

    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            corrupt = archive.testzip()
            if corrupt:
                problems.append(f"Archive entry failed CRC check: {corrupt}")
            names = set(archive.namelist())
            if STORIES_DATA_PATH not in names:
                problems.append(f"Archive is missing {STORIES_DATA_PATH}")
            if options.include_metadata:
                if MANIFEST_PATH not in names:
                    problems.append(f"Archive is missing {MANIFEST_PATH}")
                else:
                    try:
                        manifest = json.loads(archive.read(MANIFEST_PATH).decode("utf-8"))
                    except (UnicodeDecodeError, json.JSONDecodeError) as e:
                        problems.append(f"Manifest is not valid JSON: {e}")
                    else:
                        for key in ("projectInfo", "exportInfo", "structure"):
                            if key not in manifest:
                                problems.append(f"Manifest is missing '{key}'")
    except zipfile.BadZipFile as e:
        problems.append(f"Archive cannot be opened: {e}")

    return problems
