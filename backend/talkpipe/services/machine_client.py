"""HTTP client for the five stage services and the batch status endpoint.

Provides:
- Async API client (prompts, batch submit/status, script, speech, lipsync)
- Response envelope unwrapping ({success, data} or bare payloads)
- Error envelope parsing into ServiceError / ConnectivityError

Usage:
    from talkpipe.services.machine_client import get_machine_client

    client = await get_machine_client()
    prompts = await client.generate_prompts("Halloween", 6)
    job = await client.submit_batch(concept=..., prompts=..., reference_images=[...])
    snapshot = await client.get_batch_status(job.job_id)
"""

import json
import logging
import posixpath
from typing import Any, Optional, Sequence, TypeVar
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, ValidationError

from talkpipe.errors import ConnectivityError, ServiceError
from talkpipe.schemas.machine import (
    BatchJob,
    BatchSubmitResponse,
    GeneratedPrompt,
    LipsyncResponse,
    PromptsResponse,
    ReferenceImage,
    ScriptResponse,
    ScriptTone,
    SpeechResponse,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _unwrap(payload: Any) -> Any:
    """Return payload["data"] for enveloped responses, else the payload itself."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def _error_from_response(response: httpx.Response, fallback: str) -> ServiceError:
    """Build a ServiceError from a non-2xx response.

    Message preference follows the error envelope: details, then error,
    then the caller's fallback text.
    """
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    details = body.get("details") if isinstance(body.get("details"), str) else None
    error = body.get("error") if isinstance(body.get("error"), str) else None
    message = (details or "").strip() or (error or "").strip() or fallback
    return ServiceError(
        response.status_code,
        message,
        code=body.get("code"),
        details=details,
    )


class MachineClient:
    """Async client for the generation API.

    Handles JSON and multipart requests, bearer auth, envelope unwrapping,
    and conversion of transport failures into pipeline errors.
    """

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        *,
        timeout: float = 300.0,
        connect_timeout: float = 30.0,
        lipsync_timeout: float = 660.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.lipsync_timeout = lipsync_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self.api_token}"} if self.api_token else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                follow_redirects=True,
                timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        fallback: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.warning("%s %s%s failed: %s: %s", method, self.base_url, path, type(e).__name__, e)
            raise ConnectivityError() from e

        logger.debug("%s %s%s -> HTTP %d", method, self.base_url, path, response.status_code)
        if response.is_error:
            error = _error_from_response(response, fallback)
            if error.rate_limited:
                logger.warning("%s %s rate limited (HTTP 429)", method, path)
            else:
                logger.warning(
                    "%s %s -> HTTP %d code=%s: %s",
                    method, path, response.status_code, error.code, error,
                )
            raise error
        return response

    async def _json(self, model: type[M], method: str, path: str, *, fallback: str, **kwargs: Any) -> M:
        """Send a request and parse its (possibly enveloped) body into model.

        A 2xx body that is not JSON or does not match the model raises
        ServiceError, the same as a non-2xx response.
        """
        response = await self._request(method, path, fallback=fallback, **kwargs)
        try:
            return model.model_validate(_unwrap(response.json()))
        except (ValueError, ValidationError) as e:
            logger.warning(
                "%s %s -> HTTP %d unreadable body: %s",
                method, path, response.status_code, e,
            )
            raise ServiceError(response.status_code, fallback) from e

    async def generate_prompts(self, concept: str, count: int) -> list[GeneratedPrompt]:
        """POST /api/prompts/generate: returns the generated prompt list."""
        logger.info("POST %s/api/prompts/generate count=%d", self.base_url, count)
        data = await self._json(
            PromptsResponse, "POST", "/api/prompts/generate",
            json={"concept": concept, "count": count},
            fallback="Prompt generation failed",
        )
        return data.prompts

    async def submit_batch(
        self,
        *,
        concept: str,
        prompts: Sequence[GeneratedPrompt],
        reference_images: Sequence[ReferenceImage],
        aspect_ratio: str,
        resolution: str,
        output_format: str,
        images_per_prompt: int = 1,
    ) -> BatchSubmitResponse:
        """POST /api/generate/batch as multipart form data.

        Returns the job handle used for status polling.
        """
        files = [
            ("referenceImages", (img.filename, img.content, img.content_type))
            for img in reference_images
        ]
        form = {
            "concept": concept,
            "prompts": json.dumps([p.model_dump(exclude_none=True) for p in prompts]),
            "aspectRatio": aspect_ratio,
            "numImagesPerPrompt": str(images_per_prompt),
            "resolution": resolution,
            "outputFormat": output_format,
        }
        logger.info(
            "POST %s/api/generate/batch: %d prompts, %d reference image(s), %s %s",
            self.base_url, len(prompts), len(files), aspect_ratio, resolution,
        )
        result = await self._json(
            BatchSubmitResponse, "POST", "/api/generate/batch",
            data=form,
            files=files,
            fallback="Batch generation failed",
        )
        logger.info("  job_id: %s (%d images)", result.job_id, result.total_images)
        return result

    async def get_batch_status(self, job_id: str) -> BatchJob:
        """GET /api/generate/progress/{job_id}: one status snapshot."""
        return await self._json(
            BatchJob, "GET", f"/api/generate/progress/{job_id}",
            fallback="Failed to read batch progress",
        )

    async def generate_script(self, concept: str, duration: int, tone: ScriptTone) -> ScriptResponse:
        """POST /api/avatars/script."""
        logger.info("POST %s/api/avatars/script duration=%ds tone=%s", self.base_url, duration, tone.value)
        return await self._json(
            ScriptResponse, "POST", "/api/avatars/script",
            json={"concept": concept, "duration": duration, "tone": tone.value},
            fallback="Script generation failed",
        )

    async def synthesize_speech(self, text: str, voice_id: str) -> SpeechResponse:
        """POST /api/avatars/tts."""
        logger.info("POST %s/api/avatars/tts chars=%d voice=%s", self.base_url, len(text), voice_id)
        return await self._json(
            SpeechResponse, "POST", "/api/avatars/tts",
            json={"text": text, "voiceId": voice_id},
            fallback="TTS failed",
        )

    async def create_lipsync(self, image_url: str, audio_url: str) -> LipsyncResponse:
        """POST /api/avatars/lipsync: long-running, uses its own timeout."""
        logger.info("POST %s/api/avatars/lipsync image=%s audio=%s", self.base_url, image_url, audio_url)
        return await self._json(
            LipsyncResponse, "POST", "/api/avatars/lipsync",
            json={"imageUrl": image_url, "audioUrl": audio_url},
            timeout=httpx.Timeout(self.lipsync_timeout, connect=self.connect_timeout),
            fallback="Lipsync video failed",
        )

    async def fetch_asset(self, url: str) -> ReferenceImage:
        """Download a binary asset such as the selected avatar image.

        Relative paths resolve against the API host; absolute http(s) URLs
        are fetched as-is.
        """
        response = await self._request("GET", url, fallback=f"Failed to fetch asset {url}")
        filename = posixpath.basename(urlparse(url).path) or "avatar.png"
        content_type = response.headers.get("content-type", "application/octet-stream").split(";")[0]
        logger.info("  fetched asset %s: %d bytes (%s)", filename, len(response.content), content_type)
        return ReferenceImage(filename=filename, content=response.content, content_type=content_type)

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# ---------------------------------------------------------------------------
# Module-level lazy singleton
# ---------------------------------------------------------------------------

_machine_client: Optional[MachineClient] = None


async def get_machine_client(
    base_url: Optional[str] = None,
    api_token: Optional[str] = None,
) -> MachineClient:
    """Get or create a singleton MachineClient.

    Falls back to settings.services when base_url/api_token are not provided.
    """
    global _machine_client
    from talkpipe.config import settings

    resolved_url = (base_url or settings.services.base_url).rstrip("/")
    resolved_token = api_token if api_token is not None else settings.services.api_token

    # Recreate if config changed
    if _machine_client is not None:
        if _machine_client.base_url != resolved_url or _machine_client.api_token != resolved_token:
            await _machine_client.close()
            _machine_client = None

    if _machine_client is None:
        _machine_client = MachineClient(
            resolved_url,
            resolved_token,
            timeout=settings.services.request_timeout,
            connect_timeout=settings.services.connect_timeout,
            lipsync_timeout=settings.services.lipsync_timeout,
        )

    return _machine_client


async def close_machine_client() -> None:
    """Close the singleton MachineClient (for app shutdown)."""
    global _machine_client
    if _machine_client is not None:
        await _machine_client.close()
        _machine_client = None
