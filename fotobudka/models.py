"""Data models for the fotobudka generation client."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

TERMINAL_SUCCESS = ("completed", "finished")
TERMINAL_FAILURE = ("error", "failed")


class JobKind(str, Enum):
    PHOTO_EFFECT = "photo_effect"
    VIDEO_EFFECT = "video_effect"


class JobStatus(str, Enum):
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class GenerationJobRecord:
    """A generation job tracked from submission to its terminal state.

    Attributes:
        id: Client-side identifier, generated at submission time.
        kind: Photo or video effect; selects the endpoint and result type.
        template_id: Effect/video template the job was submitted with.
        status: processing, success or error.
        remote_job_id: Backend job id, known once submission succeeded.
        result_image_path: Relative path of the result image (photo, success).
        result_video_path: Relative path of the result video (video, success).
        input_source_path: Relative path of the input snapshot kept for retry.
        error_message: User-readable failure reason (error only).
        created_at: Epoch seconds; records are listed newest first.
    """
    id: str
    kind: JobKind
    template_id: int
    status: JobStatus = JobStatus.PROCESSING
    remote_job_id: str | None = None
    result_image_path: str | None = None
    result_video_path: str | None = None
    input_source_path: str | None = None
    error_message: str | None = None
    created_at: float = 0.0

    @property
    def is_video(self) -> bool:
        return self.kind is JobKind.VIDEO_EFFECT

    @property
    def result_path(self) -> str | None:
        return self.result_video_path if self.is_video else self.result_image_path

    @property
    def can_retry(self) -> bool:
        return self.status is JobStatus.ERROR and self.input_source_path is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "is_video": self.is_video,
            "template_id": self.template_id,
            "status": self.status.value,
            "result_image_path": self.result_image_path,
            "result_video_path": self.result_video_path,
            "input_source_path": self.input_source_path,
            "error_message": self.error_message,
            "created_at": self.created_at,
            "remote_job_id": self.remote_job_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenerationJobRecord:
        """Build a record from an index entry.

        Raises:
            ValueError: If the entry is malformed, not in a terminal state, or a
                success entry whose paths do not match its kind.
        """
        try:
            status = JobStatus(data["status"])
            if "kind" in data:
                kind = JobKind(data["kind"])
            else:
                kind = JobKind.VIDEO_EFFECT if data.get("is_video") else JobKind.PHOTO_EFFECT
            record = cls(
                id=str(data["id"]),
                kind=kind,
                template_id=int(data.get("template_id", 0)),
                status=status,
                remote_job_id=data.get("remote_job_id"),
                result_image_path=data.get("result_image_path"),
                result_video_path=data.get("result_video_path"),
                input_source_path=data.get("input_source_path"),
                error_message=data.get("error_message"),
                created_at=float(data.get("created_at", 0.0)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Malformed job record: {data!r}") from exc

        if status is JobStatus.PROCESSING:
            raise ValueError(f"Processing records are not restorable: {record.id}")
        if status is JobStatus.SUCCESS:
            expected, other = (
                (record.result_video_path, record.result_image_path)
                if record.is_video
                else (record.result_image_path, record.result_video_path)
            )
            if not expected or other or record.input_source_path:
                raise ValueError(f"Inconsistent success record: {record.id}")
        if status is JobStatus.ERROR and not record.error_message:
            record.error_message = "Unknown error"
        return record


@dataclass
class Generation:
    """A backend generation job as returned by submit and status calls.

    Attributes:
        id: Backend job id.
        status: queued | processing | completed | finished | error | failed.
        type: Generation type reported by the backend.
        tokens_cost: Tokens charged for the job.
        result: File name or absolute URL of the result, once finished.
        error: Backend error message, if any.
    """
    id: str
    status: str
    type: str | None = None
    tokens_cost: int | None = None
    result: str | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SUCCESS or self.status in TERMINAL_FAILURE

    @property
    def has_result(self) -> bool:
        return bool(self.result)


@dataclass
class Paywall:
    """Raw catalog data from a provider: a placement and its products."""
    identifier: str
    product_ids: list[str] = field(default_factory=list)


@dataclass
class CatalogEntry:
    """A resolved product group ("main", "tokens", "avatars")."""
    identifier: str
    product_ids: list[str] = field(default_factory=list)
    provider: str = ""


@dataclass
class SessionCredentials:
    external_id: str | None = None
    user_id: str | None = None
    access_token: str | None = None


@dataclass
class CurrentUser:
    id: str
    tokens: int = 0
    avatar_tokens: int = 0


@dataclass
class EffectItem:
    id: int
    preview: str
    title: str | None = None


@dataclass
class EffectGroup:
    id: int
    title: str | None = None
    preview: str | None = None
    effects: list[EffectItem] = field(default_factory=list)


@dataclass
class VideoTemplate:
    id: int
    title: str
    photo_preview: str
    video_preview: str | None = None
    video_preview_short: str | None = None
    is_new: bool = False


@dataclass
class VideoTemplateGroup:
    id: int
    title: str | None = None
    videos: list[VideoTemplate] = field(default_factory=list)
