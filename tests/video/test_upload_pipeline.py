"""Tests for the video upload pipeline in VideoService.

Every test checks that the staging directory is empty once the pipeline
returns or raises.
"""

import io
import re
import uuid
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from conftest import (
    TEST_BUCKET,
    FakeProbe,
    FakeRewriter,
    FakeS3Client,
    InMemoryVideoRepository,
    make_context,
)
from tubely.core.storage import UrlStrategy
from tubely.modules.transcoding.ffmpeg import FastStartError, MediaProbeError
from tubely.modules.video.schemas import VideoCreateRequest
from tubely.modules.video.service import (
    InvalidUploadError,
    NotVideoOwnerError,
    PersistenceError,
    StorageUploadError,
    UploadTooLargeError,
    VideoNotFoundError,
    VideoService,
)

MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x01" * 4096
DIRECT_URL_PATTERN = re.compile(
    rf"^https://{TEST_BUCKET}\.s3\.us-east-1\.amazonaws\.com/landscape/[0-9a-f]{{64}}\.mp4$"
)


def staged_files(temp_dir) -> list:
    return sorted(p.name for p in temp_dir.iterdir())


@pytest.fixture
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def service(context, repository) -> VideoService:
    return VideoService(context, repository)


class TestUploadPipeline:
    """End-to-end runs of ``upload_video_file`` against fakes."""

    @pytest.mark.asyncio
    async def test_landscape_upload_end_to_end(
        self, service, repository, s3_client, probe, rewriter, temp_dir, owner_id
    ) -> None:
        video = repository.add(owner_id)

        updated = await service.upload_video_file(video, io.BytesIO(MP4_BYTES), "video/mp4")

        assert DIRECT_URL_PATTERN.match(updated.video_url), updated.video_url
        key = updated.video_url.split(".amazonaws.com/", 1)[1]
        stored = s3_client.objects[key]
        assert stored["bucket"] == TEST_BUCKET
        assert stored["content_type"] == "video/mp4"
        assert stored["body"] == MP4_BYTES
        assert repository.update_count == 1
        assert len(probe.calls) == 1
        assert rewriter.outputs == [probe.calls[0] + ".processing"]
        assert staged_files(temp_dir) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "width,height,prefix",
        [(1080, 1920, "portrait/"), (640, 480, "other/"), (854, 480, "landscape/")],
    )
    async def test_orientation_prefixes_key(
        self, settings, s3_client, rewriter, repository, temp_dir, owner_id, width, height, prefix
    ) -> None:
        context = make_context(settings, s3_client, FakeProbe(width, height), rewriter)
        service = VideoService(context, repository)
        video = repository.add(owner_id)

        await service.upload_video_file(video, io.BytesIO(MP4_BYTES), "video/mp4")

        (key,) = s3_client.objects
        assert key.startswith(prefix)
        assert staged_files(temp_dir) == []

    @pytest.mark.asyncio
    async def test_content_type_parameters_accepted(
        self, service, repository, s3_client, owner_id
    ) -> None:
        video = repository.add(owner_id)
        await service.upload_video_file(video, io.BytesIO(MP4_BYTES), "Video/MP4; codecs=avc1")
        assert len(s3_client.objects) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content_type", ["video/quicktime", "image/png", "", None])
    async def test_wrong_content_type_rejected_before_staging(
        self, service, repository, s3_client, probe, temp_dir, owner_id, content_type
    ) -> None:
        video = repository.add(owner_id)
        service._stage = Mock(side_effect=AssertionError("staging must not run"))

        with pytest.raises(InvalidUploadError, match="Only MP4"):
            await service.upload_video_file(video, io.BytesIO(MP4_BYTES), content_type)

        service._stage.assert_not_called()
        assert probe.calls == []
        assert s3_client.objects == {}
        assert staged_files(temp_dir) == []

    @pytest.mark.asyncio
    async def test_probe_failure_uploads_nothing(
        self, settings, s3_client, rewriter, repository, temp_dir, owner_id
    ) -> None:
        probe = FakeProbe(error=MediaProbeError("ffprobe exited with status 1"))
        service = VideoService(make_context(settings, s3_client, probe, rewriter), repository)
        video = repository.add(owner_id)

        with pytest.raises(MediaProbeError):
            await service.upload_video_file(video, io.BytesIO(MP4_BYTES), "video/mp4")

        assert rewriter.outputs == []
        assert s3_client.objects == {}
        assert repository.update_count == 0
        assert video.video_url is None
        assert staged_files(temp_dir) == []

    @pytest.mark.asyncio
    async def test_fast_start_failure_uploads_nothing(
        self, settings, s3_client, probe, repository, temp_dir, owner_id
    ) -> None:
        rewriter = FakeRewriter(error=FastStartError("exit status 1", output="moov atom not found"))
        service = VideoService(make_context(settings, s3_client, probe, rewriter), repository)
        video = repository.add(owner_id)

        with pytest.raises(FastStartError):
            await service.upload_video_file(video, io.BytesIO(MP4_BYTES), "video/mp4")

        assert s3_client.objects == {}
        assert video.video_url is None
        assert staged_files(temp_dir) == []

    @pytest.mark.asyncio
    async def test_storage_failure_leaves_record_untouched(
        self, settings, probe, rewriter, repository, temp_dir, owner_id
    ) -> None:
        s3_client = FakeS3Client(
            fail_with=ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
        )
        service = VideoService(make_context(settings, s3_client, probe, rewriter), repository)
        video = repository.add(owner_id)

        with pytest.raises(StorageUploadError, match="Couldn't upload video"):
            await service.upload_video_file(video, io.BytesIO(MP4_BYTES), "video/mp4")

        assert repository.update_count == 0
        assert video.video_url is None
        assert staged_files(temp_dir) == []

    @pytest.mark.asyncio
    async def test_persistence_failure_after_upload(
        self, context, s3_client, temp_dir, owner_id
    ) -> None:
        repository = InMemoryVideoRepository(fail_updates=True)
        service = VideoService(context, repository)
        video = repository.add(owner_id)

        with pytest.raises(PersistenceError, match="Couldn't update video"):
            await service.upload_video_file(video, io.BytesIO(MP4_BYTES), "video/mp4")

        # The object was already stored and is not rolled back
        assert len(s3_client.objects) == 1
        assert staged_files(temp_dir) == []

    @pytest.mark.asyncio
    async def test_oversized_upload_rejected_while_staging(
        self, settings, s3_client, probe, rewriter, repository, temp_dir, owner_id
    ) -> None:
        small = settings.model_copy(update={"MAX_UPLOAD_SIZE": 1024, "UPLOAD_CHUNK_SIZE": 256})
        service = VideoService(make_context(small, s3_client, probe, rewriter), repository)
        video = repository.add(owner_id)

        with pytest.raises(UploadTooLargeError):
            await service.upload_video_file(video, io.BytesIO(b"\x00" * 1025), "video/mp4")

        assert probe.calls == []
        assert staged_files(temp_dir) == []

    @pytest.mark.asyncio
    async def test_upload_exactly_at_limit_accepted(
        self, settings, s3_client, probe, rewriter, repository, temp_dir, owner_id
    ) -> None:
        small = settings.model_copy(update={"MAX_UPLOAD_SIZE": 1024, "UPLOAD_CHUNK_SIZE": 100})
        service = VideoService(make_context(small, s3_client, probe, rewriter), repository)
        video = repository.add(owner_id)

        await service.upload_video_file(video, io.BytesIO(b"\x00" * 1024), "video/mp4")

        assert len(s3_client.objects) == 1
        assert staged_files(temp_dir) == []


class TestUrlStrategies:
    """Stored and returned URLs for each URL strategy."""

    @pytest.mark.asyncio
    async def test_cdn_url_persisted(
        self, settings, s3_client, probe, rewriter, repository, owner_id
    ) -> None:
        context = make_context(
            settings, s3_client, probe, rewriter,
            url_strategy=UrlStrategy.CDN, cdn_domain="cdn.tubely.example",
        )
        service = VideoService(context, repository)
        video = repository.add(owner_id)

        updated = await service.upload_video_file(video, io.BytesIO(MP4_BYTES), "video/mp4")

        assert updated.video_url.startswith("https://cdn.tubely.example/landscape/")
        assert service.to_response(updated).video_url == updated.video_url

    @pytest.mark.asyncio
    async def test_presigned_stores_key_and_signs_on_read(
        self, settings, s3_client, probe, rewriter, repository, owner_id
    ) -> None:
        context = make_context(
            settings, s3_client, probe, rewriter, url_strategy=UrlStrategy.PRESIGNED
        )
        service = VideoService(context, repository)
        video = repository.add(owner_id)

        updated = await service.upload_video_file(video, io.BytesIO(MP4_BYTES), "video/mp4")

        (key,) = s3_client.objects
        assert updated.video_url == key
        response = service.to_response(updated)
        assert response.video_url == (
            f"https://signed.example.com/{key}?expires={settings.PRESIGNED_URL_EXPIRE_SECONDS}"
        )

    def test_draft_without_url_is_not_signed(
        self, settings, s3_client, probe, rewriter, repository, owner_id
    ) -> None:
        context = make_context(
            settings, s3_client, probe, rewriter, url_strategy=UrlStrategy.PRESIGNED
        )
        service = VideoService(context, repository)

        response = service.to_response(repository.add(owner_id))

        assert response.video_url is None
        s3_client.generate_presigned_url.assert_not_called()


class TestOwnership:
    """Lookup and ownership checks."""

    @pytest.mark.asyncio
    async def test_owner_gets_video(self, service, repository, owner_id) -> None:
        video = repository.add(owner_id)
        assert await service.get_owned_video(video.id, owner_id) is video

    @pytest.mark.asyncio
    async def test_non_owner_rejected(self, service, repository, owner_id) -> None:
        video = repository.add(owner_id)
        with pytest.raises(NotVideoOwnerError, match="User not authorized"):
            await service.get_owned_video(video.id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_missing_video(self, service) -> None:
        with pytest.raises(VideoNotFoundError):
            await service.get_owned_video(uuid.uuid4(), uuid.uuid4())

    @pytest.mark.asyncio
    async def test_lookup_failure(self, context, owner_id) -> None:
        service = VideoService(context, InMemoryVideoRepository(fail_reads=True))
        with pytest.raises(PersistenceError, match="Couldn't get video"):
            await service.get_owned_video(uuid.uuid4(), owner_id)

    @pytest.mark.asyncio
    async def test_create_and_list(self, service, owner_id) -> None:
        created = await service.create_video(
            owner_id, VideoCreateRequest(title="Boots", description="A demo")
        )
        await service.create_video(uuid.uuid4(), VideoCreateRequest(title="Someone else"))

        videos = await service.list_videos(owner_id)

        assert [v.id for v in videos] == [created.id]
        assert videos[0].description == "A demo"


FORM_BOUNDARY = "form-boundary"
FORM_CONTENT_TYPE = f"multipart/form-data; boundary={FORM_BOUNDARY}"


def form_body(name: str = "video", data: bytes = MP4_BYTES, content_type: str = "video/mp4") -> bytes:
    return (
        f"--{FORM_BOUNDARY}\r\n"
        f'Content-Disposition: form-data; name="{name}"; filename="clip.mp4"\r\n'
        f"Content-Type: {content_type}\r\n\r\n"
    ).encode() + data + f"\r\n--{FORM_BOUNDARY}--\r\n".encode()


async def chunks(body: bytes, size: int = 1000):
    for start in range(0, len(body), size):
        yield body[start:start + size]


class TestFormUpload:
    """``upload_video_form`` streams the multipart body into the staged file."""

    @pytest.mark.asyncio
    async def test_streamed_form_end_to_end(
        self, service, repository, s3_client, temp_dir, owner_id
    ) -> None:
        video = repository.add(owner_id)

        updated = await service.upload_video_form(video, chunks(form_body()), FORM_CONTENT_TYPE)

        assert DIRECT_URL_PATTERN.match(updated.video_url), updated.video_url
        (stored,) = s3_client.objects.values()
        assert stored["body"] == MP4_BYTES
        assert stored["content_type"] == "video/mp4"
        assert staged_files(temp_dir) == []

    @pytest.mark.asyncio
    async def test_wrong_part_type_never_creates_a_file(
        self, service, repository, s3_client, probe, temp_dir, owner_id, monkeypatch
    ) -> None:
        video = repository.add(owner_id)
        create = Mock(side_effect=AssertionError("no staged file for a rejected part"))
        monkeypatch.setattr(service, "_create_staged_file", create)
        body = form_body(data=b"\x00" * (3 << 20), content_type="video/quicktime")

        with pytest.raises(InvalidUploadError, match="Only MP4"):
            await service.upload_video_form(video, chunks(body, size=1 << 16), FORM_CONTENT_TYPE)

        create.assert_not_called()
        assert probe.calls == []
        assert s3_client.objects == {}
        assert staged_files(temp_dir) == []

    @pytest.mark.asyncio
    async def test_missing_video_part(self, service, repository, temp_dir, owner_id) -> None:
        video = repository.add(owner_id)

        with pytest.raises(InvalidUploadError, match="Unable to get file"):
            await service.upload_video_form(
                video, chunks(form_body(name="thumbnail")), FORM_CONTENT_TYPE
            )

        assert staged_files(temp_dir) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("form_content_type", [None, "application/json", "multipart/form-data"])
    async def test_not_a_multipart_form(
        self, service, repository, owner_id, form_content_type
    ) -> None:
        video = repository.add(owner_id)

        with pytest.raises(InvalidUploadError, match="Unable to parse form"):
            await service.upload_video_form(video, chunks(form_body()), form_content_type)

    @pytest.mark.asyncio
    async def test_truncated_form_removes_staged_file(
        self, service, repository, probe, temp_dir, owner_id
    ) -> None:
        video = repository.add(owner_id)
        body = form_body()

        with pytest.raises(InvalidUploadError, match="Unable to parse form"):
            await service.upload_video_form(video, chunks(body[:-200]), FORM_CONTENT_TYPE)

        assert probe.calls == []
        assert staged_files(temp_dir) == []

    @pytest.mark.asyncio
    async def test_part_over_limit_stops_staging(
        self, settings, s3_client, probe, rewriter, repository, temp_dir, owner_id
    ) -> None:
        small = settings.model_copy(update={"MAX_UPLOAD_SIZE": 1024})
        service = VideoService(make_context(small, s3_client, probe, rewriter), repository)
        video = repository.add(owner_id)

        with pytest.raises(UploadTooLargeError):
            await service.upload_video_form(
                video, chunks(form_body(data=b"\x00" * 4096), size=256), FORM_CONTENT_TYPE
            )

        assert probe.calls == []
        assert staged_files(temp_dir) == []
