"""
Tests for media job creation, execution, polling and restart recovery.
"""

from pathlib import Path

import httpx
import pytest
from sqlalchemy import delete, update

from conftest import OTHER_USER_ID, USER_ID
from postcraft.errors import AuthorizationError, ValidationError
from postcraft.models import VideoJob
from postcraft.services import media_adapter as media_registry
from postcraft.services.media_adapter import ElevenLabsAdapter, MediaStatus, MediaSubmission
from postcraft.services.media_service import MediaExecutor, MediaService, resume_processing
from postcraft.settings import get_settings


@pytest.fixture
def executor(session_factory):
    return MediaExecutor(session_factory, poll_interval=0, max_attempts=3)


@pytest.fixture
def service(db, executor, deferred_supervisor):
    return MediaService(db, executor=executor, supervisor=deferred_supervisor)


async def reload(db, job_id) -> VideoJob:
    return await db.get(VideoJob, job_id, populate_existing=True)


class TestCreateJob:

    async def test_unknown_provider(self, service, make_version):
        version = await make_version()
        with pytest.raises(ValidationError) as exc:
            await service.create_job(USER_ID, version.id, "sora")
        assert exc.value.code == "UNSUPPORTED_MEDIA_PROVIDER"

    async def test_requires_integration(self, service, make_version, fake_media):
        version = await make_version()
        with pytest.raises(ValidationError) as exc:
            await service.create_job(USER_ID, version.id, "heygen")
        assert exc.value.code == "NO_MEDIA_INTEGRATION"

    async def test_foreign_version(self, service, make_version, make_integration, fake_media):
        version = await make_version(owner_id=OTHER_USER_ID)
        await make_integration("heygen")
        with pytest.raises(AuthorizationError):
            await service.create_job(USER_ID, version.id, "heygen")

    async def test_creates_pending_job_and_spawns(self, service, deferred_supervisor, make_version, make_integration, fake_media):
        version = await make_version(platform="reel_script", body="Waiting four hours?")
        await make_integration("heygen")

        job = await service.create_job(USER_ID, version.id, "HeyGen", {"avatarId": "a-1"})

        assert job.status == "pending"
        assert job.provider == "heygen"
        assert job.params == {"avatarId": "a-1"}
        assert deferred_supervisor.spawned == [f"media:{job.id}"]


class TestExecution:

    @pytest.fixture
    async def job(self, service, make_version, make_integration, fake_media):
        version = await make_version(platform="reel_script", body="Waiting four hours?")
        await make_integration("heygen")
        return await service.create_job(USER_ID, version.id, "heygen")

    async def test_polls_until_completed(self, job, db, deferred_supervisor, fake_media, notifications):
        fake_media.poll_script = [
            MediaStatus(status="processing"),
            MediaStatus(status="completed", asset_url="https://cdn.example.com/v.mp4"),
        ]

        await deferred_supervisor.run_pending()

        row = await reload(db, job.id)
        assert row.status == "completed"
        assert row.remote_id == "vid-1"
        assert row.remote_asset_url == "https://cdn.example.com/v.mp4"
        assert row.poll_attempts == 2
        assert row.completed_at is not None
        assert fake_media.submitted == ["Waiting four hours?"]
        statuses = [e["status"] for e in notifications.of_type("VIDEO_UPDATE")]
        assert statuses == ["running", "processing", "completed"]

    async def test_polling_timeout(self, job, db, deferred_supervisor, fake_media):
        await deferred_supervisor.run_pending()

        row = await reload(db, job.id)
        assert row.status == "failed"
        assert row.log["error"] == "Polling timeout"
        assert row.log["attempts"] == 3
        assert fake_media.polls == 3

    async def test_poll_errors_count_as_attempts(self, job, db, deferred_supervisor, fake_media):
        fake_media.poll_script = [
            RuntimeError("HeyGen Status API Error: 500"),
            RuntimeError("HeyGen Status API Error: 500"),
            MediaStatus(status="completed", asset_url="https://cdn.example.com/v.mp4"),
        ]

        await deferred_supervisor.run_pending()

        row = await reload(db, job.id)
        assert row.status == "completed"
        assert row.poll_attempts == 3

    async def test_provider_reports_failure(self, job, db, deferred_supervisor, fake_media):
        fake_media.poll_script = [MediaStatus(status="failed", error="avatar not found")]

        await deferred_supervisor.run_pending()

        row = await reload(db, job.id)
        assert row.status == "failed"
        assert row.log["error"] == "avatar not found"

    async def test_sync_provider_completes_without_polling(self, job, db, deferred_supervisor, fake_media):
        fake_media.submission = MediaSubmission(status="completed", asset_url="/generated-audio/a.mp3")

        await deferred_supervisor.run_pending()

        row = await reload(db, job.id)
        assert row.status == "completed"
        assert row.remote_asset_url == "/generated-audio/a.mp3"
        assert fake_media.polls == 0

    async def test_submit_error_fails_job(self, job, db, deferred_supervisor, fake_media):
        async def explode(script, params, credentials):
            raise RuntimeError("HeyGen API Error: 401 Unauthorized")

        fake_media.submit = explode

        await deferred_supervisor.run_pending()

        row = await reload(db, job.id)
        assert row.status == "failed"
        assert "401" in row.log["error"]
        assert "RuntimeError" in row.log["stack"]

    async def test_execute_skips_non_pending(self, job, executor, deferred_supervisor, fake_media):
        fake_media.submission = MediaSubmission(status="completed", asset_url="/generated-audio/a.mp3")
        await deferred_supervisor.run_pending()

        assert await executor.execute(job.id) is None
        assert len(fake_media.submitted) == 1

    async def test_job_deleted_while_polling(self, job, db, executor, session_factory, deferred_supervisor, fake_media):
        deferred_supervisor.discard()
        original_poll = fake_media.poll

        async def poll_then_delete(remote_id, credentials):
            async with session_factory() as other:
                await other.execute(delete(VideoJob).where(VideoJob.id == job.id))
                await other.commit()
            return await original_poll(remote_id, credentials)

        fake_media.poll = poll_then_delete
        fake_media.poll_script = [MediaStatus(status="completed", asset_url="https://cdn.example.com/v.mp4")]

        assert await executor.execute(job.id) is None
        assert fake_media.polls == 1
        assert await reload(db, job.id) is None

    async def test_job_deleted_during_sync_submit(self, job, db, executor, session_factory, deferred_supervisor, fake_media):
        deferred_supervisor.discard()
        fake_media.submission = MediaSubmission(status="completed", asset_url="/generated-audio/a.mp3")
        original_submit = fake_media.submit

        async def submit_then_delete(script, params, credentials):
            async with session_factory() as other:
                await other.execute(delete(VideoJob).where(VideoJob.id == job.id))
                await other.commit()
            return await original_submit(script, params, credentials)

        fake_media.submit = submit_then_delete

        assert await executor.execute(job.id) is None
        assert fake_media.submitted == ["Waiting four hours?"]


class TestResume:

    async def test_resumes_processing_jobs(self, service, db, executor, deferred_supervisor, make_version, make_integration, fake_media):
        version = await make_version()
        await make_integration("heygen")
        job = await service.create_job(USER_ID, version.id, "heygen")
        deferred_supervisor.discard()
        await db.execute(
            update(VideoJob)
            .where(VideoJob.id == job.id)
            .values(status="processing", remote_id="vid-9", poll_attempts=1)
        )
        await db.commit()
        fake_media.poll_script = [MediaStatus(status="completed", asset_url="https://cdn.example.com/v9.mp4")]

        resumed = await resume_processing(executor, deferred_supervisor)

        assert resumed == 1
        assert deferred_supervisor.spawned[-1] == f"media-resume:{job.id}"
        await deferred_supervisor.run_pending()
        row = await reload(db, job.id)
        assert row.status == "completed"
        assert row.poll_attempts == 2

    async def test_resume_ignores_other_statuses(self, service, executor, deferred_supervisor, make_version, make_integration, fake_media):
        version = await make_version()
        await make_integration("heygen")
        await service.create_job(USER_ID, version.id, "heygen")
        deferred_supervisor.discard()

        assert await resume_processing(executor, deferred_supervisor) == 0


class TestElevenLabsAdapter:

    async def test_writes_audio_file(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers["xi-api-key"]
            return httpx.Response(200, content=b"ID3fake-mp3")

        adapter = ElevenLabsAdapter(transport=httpx.MockTransport(handler))
        result = await adapter.submit("Hello there", {}, {"apiKey": "eleven-key-123456", "defaultVoiceId": "voice-1"})

        assert result.status == "completed"
        assert result.asset_url.startswith("/generated-audio/elevenlabs_")
        assert seen["url"].endswith("/text-to-speech/voice-1")
        assert seen["key"] == "eleven-key-123456"
        written = Path(get_settings().media_dir) / result.asset_url.rsplit("/", 1)[-1]
        assert written.read_bytes() == b"ID3fake-mp3"

    async def test_api_error_raises(self):
        adapter = ElevenLabsAdapter(transport=httpx.MockTransport(lambda r: httpx.Response(401, text="bad key")))
        with pytest.raises(RuntimeError, match="401"):
            await adapter.submit("Hello", {"voiceId": "v"}, {"apiKey": "eleven-key-123456"})

    async def test_missing_voice(self):
        with pytest.raises(ValidationError):
            await ElevenLabsAdapter().submit("Hello", {}, {"apiKey": "eleven-key-123456"})

    def test_registry(self):
        assert set(media_registry.list_media_adapters()) >= {"elevenlabs", "heygen"}
