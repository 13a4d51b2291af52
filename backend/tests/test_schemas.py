"""Tests for wire payload parsing and batch snapshot merging."""

from talkpipe.schemas.machine import BatchJob, GeneratedPrompt, ItemStatus, JobStatus, LipsyncResponse


def test_batch_job_from_wire_payload():
    job = BatchJob.model_validate({
        "jobId": "abc",
        "status": "running",
        "totalImages": 4,
        "completedImages": 1,
        "progress": 25,
        "outputDir": "/out/abc",
        "images": [{"index": 0, "status": "completed", "url": "/out/abc/0.jpg", "localPath": "/tmp/0.jpg"}],
        "unknownField": True,
    })

    assert job.job_id == "abc"
    assert job.status == JobStatus.RUNNING
    assert job.total == 4
    assert job.items[0].local_path == "/tmp/0.jpg"


def test_merge_keeps_completed_monotonic_and_bounded():
    old = BatchJob(job_id="j", total=4, completed=3)

    assert old.merge(BatchJob(job_id="j", total=4, completed=1)).completed == 3
    assert old.merge(BatchJob(job_id="j", total=4, completed=7)).completed == 4


def test_merge_never_regresses_items():
    old = BatchJob.model_validate({
        "jobId": "j", "totalImages": 2,
        "images": [{"index": 0, "status": "completed", "url": "/0.jpg"}, {"index": 1, "status": "generating"}],
    })
    newer = BatchJob.model_validate({
        "jobId": "j", "status": "running", "totalImages": 2,
        "images": [{"index": 0, "status": "pending"}, {"index": 1, "status": "completed", "url": "/1.jpg"}],
    })

    merged = old.merge(newer)

    assert [i.status for i in merged.items] == [ItemStatus.COMPLETED, ItemStatus.COMPLETED]
    assert merged.items[0].url == "/0.jpg"
    assert merged.status == JobStatus.RUNNING


def test_prompt_preserves_unknown_sections():
    prompt = GeneratedPrompt.model_validate({"style": "noir", "props": {"items": ["pumpkin"]}})

    assert prompt.model_dump(exclude_none=True) == {"style": "noir", "props": {"items": ["pumpkin"]}}


def test_lipsync_response_aliases():
    response = LipsyncResponse.model_validate({"success": True, "videoUrl": "https://cdn/v.mp4", "generationId": "g1"})

    assert response.video_url == "https://cdn/v.mp4"
    assert response.local_path is None
