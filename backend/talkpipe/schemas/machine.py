"""Pydantic schemas for pipeline inputs, wire payloads and run state.

Wire payloads from the collaborator services use camelCase field names;
models accept them through aliases and expose snake_case attributes.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ScriptTone(str, Enum):
    """Voiceover tone accepted by the script service."""

    CASUAL = "casual"
    PROFESSIONAL = "professional"
    ENERGETIC = "energetic"
    FRIENDLY = "friendly"
    DRAMATIC = "dramatic"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ItemStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        # completed and failed are both terminal and never replace each other
        return {"pending": 0, "generating": 1, "completed": 2, "failed": 2}[self.value]


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class GeneratedPrompt(BaseModel):
    """A structured image prompt produced by the prompt service.

    The pipeline never inspects prompt content; the sections are declared so
    the shape is documented, and unknown keys are preserved verbatim so the
    prompt can be forwarded to the batch service unchanged.
    """

    model_config = ConfigDict(extra="allow")

    style: Optional[str] = None
    pose: Optional[dict[str, Any]] = None
    lighting: Optional[dict[str, Any]] = None
    set_design: Optional[dict[str, Any]] = None
    outfit: Optional[dict[str, Any]] = None
    camera: Optional[dict[str, Any]] = None
    hairstyle: Optional[dict[str, Any]] = None
    makeup: Optional[dict[str, Any]] = None
    effects: Optional[dict[str, Any]] = None


class Avatar(_WireModel):
    name: str
    filename: str = ""
    url: str


class Voice(_WireModel):
    id: str
    name: str = ""
    category: Optional[str] = None
    preview_url: Optional[str] = Field(default=None, alias="previewUrl")


class ReferenceImage(BaseModel):
    """A user-supplied reference image sent with the batch request."""

    model_config = ConfigDict(frozen=True)

    filename: str
    content: bytes
    content_type: str = "image/png"


class RunInputs(BaseModel):
    """Immutable inputs for one run of the pipeline."""

    model_config = ConfigDict(frozen=True)

    concept: str
    prompt_count: int = 6
    reference_images: tuple[ReferenceImage, ...] = ()
    script_duration: int = 30
    script_tone: ScriptTone = ScriptTone.ENERGETIC
    voice: Optional[Voice] = None
    avatar: Optional[Avatar] = None


# ---------------------------------------------------------------------------
# Batch job
# ---------------------------------------------------------------------------

class AssetItem(_WireModel):
    index: int
    status: ItemStatus = ItemStatus.PENDING
    url: Optional[str] = None
    local_path: Optional[str] = Field(default=None, alias="localPath")
    error: Optional[str] = None


class BatchJob(_WireModel):
    """State of the asynchronous asset-generation job."""

    job_id: str = Field(alias="jobId")
    status: JobStatus = JobStatus.QUEUED
    total: int = Field(default=0, alias="totalImages")
    completed: int = Field(default=0, alias="completedImages")
    progress: int = 0
    output_dir: Optional[str] = Field(default=None, alias="outputDir")
    items: list[AssetItem] = Field(default_factory=list, alias="images")

    def merge(self, newer: "BatchJob") -> "BatchJob":
        """Fold a newer status snapshot into this one.

        The completed count never decreases and never exceeds the total,
        and no item moves backwards through pending -> generating -> done.
        """
        total = max(self.total, newer.total)
        completed = min(max(self.completed, newer.completed), total) if total else newer.completed

        previous = {item.index: item for item in self.items}
        items: list[AssetItem] = []
        for item in newer.items:
            old = previous.pop(item.index, None)
            if old is not None and old.status.rank >= item.status.rank:
                items.append(old)
            else:
                items.append(item)
        items.extend(previous.values())
        items.sort(key=lambda i: i.index)

        return newer.model_copy(update={
            "total": total,
            "completed": completed,
            "progress": max(self.progress, newer.progress),
            "output_dir": newer.output_dir or self.output_dir,
            "items": items,
        })


# ---------------------------------------------------------------------------
# Stage responses
# ---------------------------------------------------------------------------

class PromptsResponse(_WireModel):
    prompts: list[GeneratedPrompt]


class BatchSubmitResponse(_WireModel):
    job_id: str = Field(alias="jobId")
    status: JobStatus = JobStatus.QUEUED
    total_images: int = Field(default=0, alias="totalImages")
    output_dir: Optional[str] = Field(default=None, alias="outputDir")

    def to_job(self) -> BatchJob:
        return BatchJob(
            job_id=self.job_id,
            status=self.status,
            total=self.total_images,
            completed=0,
            output_dir=self.output_dir,
        )


class ScriptResponse(_WireModel):
    script: str = ""
    word_count: Optional[int] = Field(default=None, alias="wordCount")
    estimated_duration: Optional[float] = Field(default=None, alias="estimatedDuration")


class SpeechResponse(_WireModel):
    audio_url: Optional[str] = Field(default=None, alias="audioUrl")
    audio_path: Optional[str] = Field(default=None, alias="audioPath")


class LipsyncResponse(_WireModel):
    success: bool = False
    local_path: Optional[str] = Field(default=None, alias="localPath")
    video_url: Optional[str] = Field(default=None, alias="videoUrl")
    generation_id: Optional[str] = Field(default=None, alias="generationId")


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------

class ErrorInfo(BaseModel):
    """User-facing description of why a run stopped."""

    message: str
    type: str = "error"  # error | warning | info
    code: Optional[str] = None
    stage: Optional[str] = None
    rate_limited: bool = False


class Run(BaseModel):
    """The unit of orchestration, published to subscribers after every change."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    current_stage: str = "idle"
    failed_stage: Optional[str] = None
    cancellation_epoch: int = 0
    inputs: Optional[RunInputs] = None
    error: Optional[ErrorInfo] = None
    started_at: Optional[datetime] = None
    stage_timings: dict[str, float] = Field(default_factory=dict)

    prompts: list[GeneratedPrompt] = Field(default_factory=list)
    asset_job: Optional[BatchJob] = None
    script: str = ""
    speech_url: Optional[str] = None
    video_url: Optional[str] = None
