"""Tests for the HeyGen client against a local aiohttp server."""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from core.errors import ProviderError, RenderFailedError, RenderTimeoutError, TransportError
from core.models import AudioVoice, JobStatus, TextVoice
from fakes import WAV_BYTES
from video.heygen_client import HeyGenClient, RenderStatus, asset_content_type, detect_image_mime

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FakeHeyGen:
    """Records requests and answers with scripted payloads."""

    def __init__(self):
        self.requests = []
        self.statuses = []
        self.generate_response = (200, {"error": None, "data": {"video_id": "vid_123"}})

    def app(self):
        app = web.Application()
        app.router.add_post("/v1/asset", self.upload)
        app.router.add_post("/v2/video/generate", self.generate)
        app.router.add_get("/v1/video_status.get", self.status)
        app.router.add_get("/v2/avatars", self.avatars)
        app.router.add_get("/v2/voices", self.voices)
        app.router.add_get("/files/video.mp4", self.video_file)
        app.router.add_get("/files/missing.mp4", self.missing_file)
        app.router.add_get("/files/truncated.mp4", self.truncated_file)
        return app

    async def upload(self, request):
        body = await request.read()
        self.requests.append(("upload", request.headers.copy(), body))
        return web.json_response({"code": 100, "data": {"id": "asset_abc", "url": "https://files.example.com/asset_abc"}})

    async def generate(self, request):
        body = await request.json()
        self.requests.append(("generate", request.headers.copy(), body))
        status, payload = self.generate_response
        return web.json_response(payload, status=status)

    async def status(self, request):
        self.requests.append(("status", request.headers.copy(), request.query.get("video_id")))
        status = self.statuses.pop(0)
        if isinstance(status, int):
            return web.json_response({"error": {"message": "upstream unavailable"}}, status=status)
        return web.json_response({"code": 100, "data": status})

    async def avatars(self, request):
        return web.json_response({"data": {"avatars": [{"avatar_id": "Anna_public_3", "avatar_name": "Anna"}]}})

    async def voices(self, request):
        return web.json_response({"data": {"voices": [{"voice_id": "v1", "name": "Sara", "language": "Dutch"}]}})

    async def video_file(self, request):
        return web.Response(body=b"\x00\x00\x00\x18ftypmp42" * 2000, content_type="video/mp4")

    async def missing_file(self, request):
        return web.Response(status=404, text="gone")

    async def truncated_file(self, request):
        # Promise more bytes than are sent, then drop the connection
        response = web.StreamResponse(headers={"Content-Length": "100000", "Content-Type": "video/mp4"})
        await response.prepare(request)
        await response.write(b"\x00" * 1024)
        request.transport.close()
        return response


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
async def heygen():
    fake = FakeHeyGen()
    server = TestServer(fake.app())
    await server.start_server()
    fake.url = str(server.make_url("/")).rstrip("/")
    yield fake
    await server.close()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def client(heygen, sleep):
    return HeyGenClient(
        "test-key",
        base_url=heygen.url,
        upload_url=heygen.url,
        poll_interval=0.5,
        max_poll_attempts=3,
        sleep=sleep,
    )


class TestContentType:
    @pytest.mark.parametrize(
        "mime_type, expected",
        [
            ("audio/wav", "audio/x-wav"),
            ("audio/wave", "audio/x-wav"),
            ("audio/mpeg", "audio/mpeg"),
            ("audio/mp3", "audio/mpeg"),
            ("audio/webm;codecs=opus", "audio/x-wav"),
            (None, "audio/x-wav"),
        ],
    )
    def test_audio(self, mime_type, expected):
        assert asset_content_type(WAV_BYTES, "audio", mime_type) == expected

    def test_image_prefers_declared_type(self):
        assert asset_content_type(PNG, "image", "image/webp") == "image/webp"

    def test_image_falls_back_to_sniffing(self):
        assert asset_content_type(PNG, "image") == "image/png"
        assert asset_content_type(b"\xff\xd8\xff\xe0", "image") == "image/jpeg"
        assert asset_content_type(b"????", "image") == "image/jpeg"

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            asset_content_type(b"", "video")

    def test_detect_webp(self):
        assert detect_image_mime(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"


class TestUpload:
    async def test_raw_body_with_api_key(self, client, heygen):
        asset = await client.upload_asset(WAV_BYTES, "audio", "audio/wav")

        assert asset.id == "asset_abc"
        assert asset.url == "https://files.example.com/asset_abc"
        kind, headers, body = heygen.requests[0]
        assert kind == "upload"
        assert body == WAV_BYTES
        assert headers["x-api-key"] == "test-key"
        assert headers["Content-Type"] == "audio/x-wav"

    async def test_image_upload_content_type(self, client, heygen):
        await client.upload_asset(PNG, "image")

        _, headers, _ = heygen.requests[0]
        assert headers["Content-Type"] == "image/png"


class TestSubmit:
    async def test_payload_for_text_voice(self, client, heygen):
        character = {"type": "avatar", "avatar_id": "Anna_public_3", "avatar_style": "normal"}

        video_id = await client.submit_render(character, TextVoice(voice_id="v1", text="Hallo daar"))

        assert video_id == "vid_123"
        _, _, body = heygen.requests[0]
        assert body == {
            "video_inputs": [{
                "character": character,
                "voice": {"type": "text", "voice_id": "v1", "input_text": "Hallo daar"},
            }],
            "dimension": {"width": 1280, "height": 720},
            "aspect_ratio": "16:9",
            "test": False,
        }

    async def test_payload_for_audio_voice(self, client, heygen):
        await client.submit_render({"type": "photo", "photo_id": "p1"}, AudioVoice(asset_id="asset_abc"))

        _, _, body = heygen.requests[0]
        assert body["video_inputs"][0]["voice"] == {"type": "audio", "audio_asset_id": "asset_abc"}

    async def test_error_status_raises_provider_error(self, client, heygen):
        heygen.generate_response = (400, {"error": {"code": "invalid_parameter", "message": "avatar not found"}})

        with pytest.raises(ProviderError) as exc_info:
            await client.submit_render({"type": "avatar", "avatar_id": "x"}, TextVoice("v1", "hi"))

        assert exc_info.value.http_status == 400
        assert "avatar not found" in str(exc_info.value)

    async def test_missing_video_id(self, client, heygen):
        heygen.generate_response = (200, {"data": {}})

        with pytest.raises(ProviderError):
            await client.submit_render({"type": "avatar", "avatar_id": "x"}, TextVoice("v1", "hi"))


class TestStatus:
    @pytest.mark.parametrize("raw", ["pending", "waiting", "processing"])
    async def test_in_progress_states(self, client, heygen, raw):
        heygen.statuses = [{"status": raw}]

        status = await client.get_status("vid_123")

        assert status.status is JobStatus.PROCESSING
        assert not status.is_terminal
        assert heygen.requests[0][2] == "vid_123"

    async def test_completed(self, client, heygen):
        heygen.statuses = [{
            "status": "completed",
            "video_url": "https://cdn.example.com/v.mp4",
            "thumbnail_url": "https://cdn.example.com/v.jpg",
            "duration": 8.2,
        }]

        status = await client.get_status("vid_123")

        assert status.status is JobStatus.COMPLETED
        assert status.video_url == "https://cdn.example.com/v.mp4"
        assert status.thumbnail_url == "https://cdn.example.com/v.jpg"
        assert status.duration == 8.2

    async def test_completed_without_url_is_a_provider_error(self, client, heygen):
        heygen.statuses = [{"status": "completed"}]

        with pytest.raises(ProviderError):
            await client.get_status("vid_123")

    async def test_failed_carries_detail(self, client, heygen):
        heygen.statuses = [{"status": "failed", "error": {"code": 40001, "detail": "face not detected"}}]

        status = await client.get_status("vid_123")

        assert status.status is JobStatus.FAILED
        assert status.error == "face not detected"

    async def test_unknown_status(self, client, heygen):
        heygen.statuses = [{"status": "exploded"}]

        with pytest.raises(ProviderError, match="exploded"):
            await client.get_status("vid_123")


class TestWaitForVideo:
    async def test_returns_url_when_completed(self, client, heygen, sleep):
        heygen.statuses = [{"status": "processing"}, {"status": "completed", "video_url": "https://cdn.example.com/v.mp4"}]

        assert await client.wait_for_video("vid_123") == "https://cdn.example.com/v.mp4"
        assert sleep.delays == [0.5]

    async def test_failure(self, client, heygen):
        heygen.statuses = [{"status": "failed", "error": "bad audio"}]

        with pytest.raises(RenderFailedError, match="bad audio"):
            await client.wait_for_video("vid_123")

    async def test_gives_up_after_max_attempts(self, client, heygen, sleep):
        heygen.statuses = [{"status": "processing"}] * 3

        with pytest.raises(RenderTimeoutError) as exc_info:
            await client.wait_for_video("vid_123")

        assert exc_info.value.attempts == 3
        assert len(sleep.delays) == 3

    async def test_provider_errors_use_up_attempts(self, client, heygen, sleep):
        heygen.statuses = [502, {"status": "completed", "video_url": "https://cdn.example.com/v.mp4"}]

        assert await client.wait_for_video("vid_123") == "https://cdn.example.com/v.mp4"
        assert sleep.delays == [0.5]

    async def test_transport_error_is_retried(self, client, sleep, monkeypatch):
        outcomes = [
            TransportError("connection reset"),
            RenderStatus(status=JobStatus.COMPLETED, video_url="https://cdn.example.com/v.mp4"),
        ]

        async def get_status(video_id):
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        monkeypatch.setattr(client, "get_status", get_status)

        assert await client.wait_for_video("vid_123") == "https://cdn.example.com/v.mp4"
        assert sleep.delays == [0.5]

    async def test_errors_until_ceiling_time_out(self, client, sleep, monkeypatch):
        calls = []

        async def get_status(video_id):
            calls.append(video_id)
            raise TransportError("connection reset")

        monkeypatch.setattr(client, "get_status", get_status)

        with pytest.raises(RenderTimeoutError) as exc_info:
            await client.wait_for_video("vid_123")

        assert exc_info.value.attempts == 3
        assert len(calls) == 3

    async def test_failure_after_error_is_not_retried(self, client, heygen):
        heygen.statuses = [503, {"status": "failed", "error": "bad audio"}, {"status": "processing"}]

        with pytest.raises(RenderFailedError):
            await client.wait_for_video("vid_123")

        assert heygen.statuses == [{"status": "processing"}]


class TestCatalogue:
    async def test_list_avatars_and_voices(self, client):
        avatars = await client.list_avatars()
        voices = await client.list_voices()

        assert avatars[0]["avatar_id"] == "Anna_public_3"
        assert voices[0]["name"] == "Sara"


class TestDownload:
    async def test_streams_to_file(self, client, heygen, tmp_path):
        output = tmp_path / "video.mp4"

        path = await client.download_video(f"{heygen.url}/files/video.mp4", str(output))

        assert path == str(output)
        assert output.read_bytes() == b"\x00\x00\x00\x18ftypmp42" * 2000

    async def test_http_error(self, client, heygen, tmp_path):
        with pytest.raises(ProviderError) as exc_info:
            await client.download_video(f"{heygen.url}/files/missing.mp4", str(tmp_path / "v.mp4"))

        assert exc_info.value.http_status == 404
        assert list(tmp_path.iterdir()) == []

    async def test_interrupted_download_leaves_no_file(self, client, heygen, tmp_path):
        output = tmp_path / "video.mp4"

        with pytest.raises(TransportError):
            await client.download_video(f"{heygen.url}/files/truncated.mp4", str(output))

        assert list(tmp_path.iterdir()) == []


async def test_unreachable_host_is_a_transport_error():
    client = HeyGenClient("test-key", base_url="http://127.0.0.1:1", upload_url="http://127.0.0.1:1", timeout=5)

    with pytest.raises(TransportError):
        await client.get_status("vid_123")
