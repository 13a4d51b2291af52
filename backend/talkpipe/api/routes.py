"""API route handlers and Pydantic request/response schemas.

Exposes the single per-process orchestrator so a UI can drive the run and
poll its state. Runs execute in the background; POST endpoints return as
soon as the run has been started.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import Base64Bytes, BaseModel, Field

from talkpipe.config import settings
from talkpipe.errors import InvalidResumeError, PipelineValidationError
from talkpipe.orchestrator.pipeline import MachineOrchestrator
from talkpipe.schemas.machine import Avatar, ReferenceImage, Run, RunInputs, ScriptTone, Voice

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/machine")


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class ReferenceImageIn(BaseModel):
    filename: str
    content: Base64Bytes
    content_type: str = "image/png"


class RunRequest(BaseModel):
    """Request schema for POST /api/machine/run."""
    concept: str = ""
    prompt_count: int = Field(default_factory=lambda: settings.limits.prompt_count_default)
    reference_images: list[ReferenceImageIn] = Field(default_factory=list)
    script_duration: int = 30
    script_tone: ScriptTone = ScriptTone.ENERGETIC
    voice: Optional[Voice] = None
    avatar: Optional[Avatar] = None

    def to_inputs(self) -> RunInputs:
        return RunInputs(
            concept=self.concept,
            prompt_count=self.prompt_count,
            reference_images=tuple(
                ReferenceImage(filename=r.filename, content=r.content, content_type=r.content_type)
                for r in self.reference_images[:settings.limits.max_reference_images]
            ),
            script_duration=self.script_duration,
            script_tone=self.script_tone,
            voice=self.voice,
            avatar=self.avatar,
        )


class ResumeRequest(BaseModel):
    """Request schema for POST /api/machine/resume."""
    stage: Optional[str] = None


def _state_payload(run: Run) -> dict[str, Any]:
    """Serialize run state without the raw reference image bytes."""
    return run.model_dump(mode="json", exclude={"inputs": {"reference_images"}})


def get_orchestrator(request: Request) -> MachineOrchestrator:
    return request.app.state.orchestrator


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/state")
async def get_state(orchestrator: MachineOrchestrator = Depends(get_orchestrator)):
    """Current run state (stage, outputs, error)."""
    return _state_payload(orchestrator.state)


@router.post("/run", status_code=202)
async def start_run(request: RunRequest, orchestrator: MachineOrchestrator = Depends(get_orchestrator)):
    """Start a fresh run, superseding any run in progress.

    Returns 400 if the inputs are incomplete; the run stays idle.
    """
    try:
        orchestrator.start(request.to_inputs())
    except PipelineValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Run {orchestrator.state.id} started via API")
    return _state_payload(orchestrator.state)


@router.post("/resume", status_code=202)
async def resume_run(request: ResumeRequest, orchestrator: MachineOrchestrator = Depends(get_orchestrator)):
    """Resume the failed run from its failed stage.

    Returns 409 if the run is not failed or the stage is not the failed one.
    """
    try:
        orchestrator.resume(request.stage)
    except InvalidResumeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PipelineValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return _state_payload(orchestrator.state)


@router.post("/cancel")
async def cancel_run(orchestrator: MachineOrchestrator = Depends(get_orchestrator)):
    """Abort the current run and clear its outputs."""
    orchestrator.cancel()
    return _state_payload(orchestrator.state)


@router.post("/reset")
async def reset_run(orchestrator: MachineOrchestrator = Depends(get_orchestrator)):
    """Abort and discard all progress, inputs and errors."""
    orchestrator.reset()
    return _state_payload(orchestrator.state)


@router.post("/dismiss-error")
async def dismiss_error(orchestrator: MachineOrchestrator = Depends(get_orchestrator)):
    orchestrator.dismiss_error()
    return _state_payload(orchestrator.state)
