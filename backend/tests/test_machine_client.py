"""Tests for MachineClient against an httpx.MockTransport.

Covers envelope unwrapping, error envelope parsing, rate limiting,
connectivity failures and the multipart batch request.
"""

import json

import httpx
import pytest

from talkpipe.errors import ConnectivityError, ServiceError
from talkpipe.schemas.machine import GeneratedPrompt, JobStatus, ReferenceImage, ScriptTone
from talkpipe.services.machine_client import MachineClient


def _client(handler, api_token=None):
    return MachineClient("http://api.test/", api_token, transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Test: success envelopes
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_prompts_unwraps_success_envelope():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"success": True, "data": {"prompts": [{"style": "gothic"}, {"style": "retro"}]}})

    client = _client(handler, api_token="secret")
    try:
        prompts = await client.generate_prompts("Halloween", 2)
    finally:
        await client.close()

    assert [p.style for p in prompts] == ["gothic", "retro"]
    assert seen["path"] == "/api/prompts/generate"
    assert seen["body"] == {"concept": "Halloween", "count": 2}
    assert seen["auth"] == "Bearer secret"


@pytest.mark.asyncio
async def test_bare_payload_accepted():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"script": "Hello there", "wordCount": 2, "estimatedDuration": 1.2})

    client = _client(handler)
    try:
        response = await client.generate_script("Greetings", 10, ScriptTone.FRIENDLY)
    finally:
        await client.close()

    assert response.script == "Hello there"
    assert response.word_count == 2


@pytest.mark.asyncio
async def test_batch_status_parses_camel_case():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/generate/progress/job-9"
        return httpx.Response(200, json={
            "success": True,
            "data": {"jobId": "job-9", "status": "completed", "totalImages": 2, "completedImages": 2},
        })

    client = _client(handler)
    try:
        job = await client.get_batch_status("job-9")
    finally:
        await client.close()

    assert job.status == JobStatus.COMPLETED
    assert job.completed == 2


# ---------------------------------------------------------------------------
# Test: error envelopes
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_error_prefers_details_then_error():
    bodies = [
        {"success": False, "error": "Lipsync failed", "code": "LIPSYNC_FAILED", "details": "provider timeout"},
        {"success": False, "error": "Lipsync failed", "code": "LIPSYNC_FAILED"},
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json=bodies.pop(0))

    client = _client(handler)
    try:
        with pytest.raises(ServiceError) as first:
            await client.create_lipsync("/avatars/a.png", "/audio/a.mp3")
        with pytest.raises(ServiceError) as second:
            await client.create_lipsync("/avatars/a.png", "/audio/a.mp3")
    finally:
        await client.close()

    assert str(first.value) == "provider timeout"
    assert first.value.code == "LIPSYNC_FAILED"
    assert str(second.value) == "Lipsync failed"


@pytest.mark.asyncio
async def test_error_without_json_uses_fallback():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    client = _client(handler)
    try:
        with pytest.raises(ServiceError) as exc_info:
            await client.synthesize_speech("Hello", "rachel_01")
    finally:
        await client.close()

    assert str(exc_info.value) == "TTS failed"
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_rate_limited():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"success": False, "error": "Too many requests", "code": "RATE_LIMITED"})

    client = _client(handler)
    try:
        with pytest.raises(ServiceError) as exc_info:
            await client.generate_prompts("Halloween", 6)
    finally:
        await client.close()

    assert exc_info.value.rate_limited


@pytest.mark.asyncio
async def test_success_status_with_html_body_uses_fallback():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>bad gateway</html>")

    client = _client(handler)
    try:
        with pytest.raises(ServiceError) as exc_info:
            await client.get_batch_status("job-9")
    finally:
        await client.close()

    assert str(exc_info.value) == "Failed to read batch progress"
    assert exc_info.value.status_code == 200


@pytest.mark.asyncio
async def test_success_status_with_wrong_shape_uses_fallback():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": {"status": "completed"}})

    client = _client(handler)
    try:
        with pytest.raises(ServiceError) as exc_info:
            await client.get_batch_status("job-9")
    finally:
        await client.close()

    assert str(exc_info.value) == "Failed to read batch progress"
    assert not exc_info.value.rate_limited


@pytest.mark.asyncio
async def test_connect_error_becomes_connectivity_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    client = _client(handler)
    try:
        with pytest.raises(ConnectivityError):
            await client.get_batch_status("job-1")
    finally:
        await client.close()


# ---------------------------------------------------------------------------
# Test: multipart batch submit and asset download
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_submit_batch_multipart():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        body = request.read()
        seen["content_type"] = request.headers["content-type"]
        seen["body"] = body
        return httpx.Response(200, json={
            "success": True,
            "data": {"jobId": "job-1", "status": "queued", "totalImages": 2, "outputDir": "/out/job-1"},
        })

    client = _client(handler)
    try:
        result = await client.submit_batch(
            concept="Halloween",
            prompts=[GeneratedPrompt(style="gothic"), GeneratedPrompt(style="retro")],
            reference_images=[
                ReferenceImage(filename="avatar.png", content=b"avatar-bytes"),
                ReferenceImage(filename="ref.jpg", content=b"ref-bytes", content_type="image/jpeg"),
            ],
            aspect_ratio="9:16",
            resolution="2K",
            output_format="jpeg",
        )
    finally:
        await client.close()

    assert result.job_id == "job-1"
    assert result.to_job().total == 2
    assert seen["content_type"].startswith("multipart/form-data")
    assert seen["body"].count(b'name="referenceImages"') == 2
    assert b'filename="avatar.png"' in seen["body"]
    assert b'"style": "gothic"' in seen["body"]
    assert b'name="aspectRatio"' in seen["body"]


@pytest.mark.asyncio
async def test_fetch_asset():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/avatars/maya.png"
        return httpx.Response(200, content=b"png-bytes", headers={"content-type": "image/png"})

    client = _client(handler)
    try:
        image = await client.fetch_asset("/avatars/maya.png")
    finally:
        await client.close()

    assert image.filename == "maya.png"
    assert image.content == b"png-bytes"
    assert image.content_type == "image/png"
