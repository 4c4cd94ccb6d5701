"""
HTTP-level tests for the worker routes.
"""

import asyncio
import io
import zipfile
from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from scorm_backend.pipeline import Pipeline
from server import PackageResponse, create_app

from .conftest import FakeRunner

SECRET = "worker-s3cret"
DECK = ("deck.pptx", b"PK\x03\x04 fake deck", "application/vnd.openxmlformats-officedocument.presentationml.presentation")


def _client(settings, runner=None):
    app = create_app(settings, Pipeline(settings, runner=runner or FakeRunner()))
    return TestClient(app)


@pytest.fixture
def secured(settings):
    return replace(settings, worker_secret=SECRET)


class TestHealth:
    def test_health(self, settings):
        with _client(settings) as client:
            response = client.get("/health")
        assert response.status_code == 200
        assert response.text == "ok"

    def test_diag_masks_secret(self, secured):
        with _client(secured) as client:
            response = client.get("/diag")
        assert response.json() == {"has_secret": True, "secret_masked": "wo…et (13)"}

    def test_diag_without_secret(self, settings):
        with _client(settings) as client:
            assert client.get("/diag").json() == {"has_secret": False, "secret_masked": "(empty)"}


class TestAuthorization:
    def test_wrong_secret_rejected_with_file(self, secured, workspaces_root):
        runner = FakeRunner()
        with _client(secured, runner) as client:
            response = client.post("/convert", files={"file": DECK}, headers={"X-Worker-Secret": "nope"})
        assert response.status_code == 401
        assert runner.calls == []
        assert list(workspaces_root.iterdir()) == []

    def test_wrong_secret_rejected_without_file(self, secured):
        with _client(secured) as client:
            response = client.post("/convert", data={"title": "Demo"}, headers={"X-Worker-Secret": "nope"})
        assert response.status_code == 401

    def test_missing_secret_rejected(self, secured):
        with _client(secured) as client:
            response = client.post("/convert", files={"file": DECK})
        assert response.status_code == 401

    def test_correct_secret_with_whitespace_accepted(self, secured):
        with _client(secured) as client:
            response = client.post(
                "/convert", files={"file": DECK}, headers={"X-Worker-Secret": f"  {SECRET} "}
            )
        assert response.status_code == 200

    def test_no_configured_secret_lets_everyone_in(self, settings):
        with _client(settings) as client:
            response = client.post("/convert", files={"file": DECK}, headers={"X-Worker-Secret": "whatever"})
        assert response.status_code == 200


class TestConvert:
    def test_end_to_end(self, secured, workspaces_root):
        with _client(secured, FakeRunner(pages=3)) as client:
            response = client.post(
                "/convert",
                files={"file": DECK},
                data={"title": "Demo"},
                headers={"X-Worker-Secret": SECRET},
            )

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/zip"
        assert response.headers["content-disposition"] == 'attachment; filename="course_scorm.zip"'

        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert zf.namelist() == [
                "index.html",
                "imsmanifest.xml",
                "slides/slide-1.png",
                "slides/slide-2.png",
                "slides/slide-3.png",
            ]
            assert "<title>Demo</title>" in zf.read("imsmanifest.xml").decode("utf-8")
        assert list(workspaces_root.iterdir()) == []

    def test_title_is_capped(self, settings):
        with _client(settings) as client:
            response = client.post("/convert", files={"file": DECK}, data={"title": "t" * 250})
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            manifest = zf.read("imsmanifest.xml").decode("utf-8")
        assert f"<title>{'t' * 200}</title>" in manifest
        assert "t" * 201 not in manifest

    def test_missing_file(self, settings, workspaces_root):
        with _client(settings) as client:
            response = client.post("/convert", data={"title": "Demo"})
        assert response.status_code == 400
        assert response.json()["detail"] == "No file uploaded"
        assert list(workspaces_root.iterdir()) == []

    def test_empty_file(self, settings, workspaces_root):
        with _client(settings) as client:
            response = client.post("/convert", files={"file": ("deck.pptx", b"", "application/octet-stream")})
        assert response.status_code == 400
        assert list(workspaces_root.iterdir()) == []

    def test_upload_too_large(self, settings, workspaces_root):
        small = replace(settings, max_upload_bytes=8)
        with _client(small) as client:
            response = client.post("/convert", files={"file": DECK})
        assert response.status_code == 413
        assert list(workspaces_root.iterdir()) == []

    @pytest.mark.parametrize(
        "runner, message",
        [
            (FakeRunner(fail_tool="soffice"), "Worker error: External conversion tool failed"),
            (FakeRunner(produce_pdf=False), "Worker error: Conversion produced no usable output. Check input file."),
            (FakeRunner(fail_tool="pdftoppm"), "Worker error: External conversion tool failed"),
            (FakeRunner(pages=0), "Worker error: No slides produced. Check input file."),
        ],
    )
    def test_pipeline_failures(self, settings, workspaces_root, runner, message):
        with _client(settings, runner) as client:
            response = client.post("/convert", files={"file": DECK})
        assert response.status_code == 500
        assert response.json()["detail"] == message
        # Internal paths and tool stderr stay in the logs.
        assert str(workspaces_root) not in response.text
        assert "boom" not in response.text
        assert list(workspaces_root.iterdir()) == []

    def test_startup_sweeps_stale_workspaces(self, settings, workspaces_root):
        stale = workspaces_root / ("a" * 32)
        stale.mkdir()
        with _client(settings):
            pass
        assert not stale.exists()

    def test_upload_named_like_slides_dir(self, settings, workspaces_root):
        with _client(settings, FakeRunner(pages=2)) as client:
            response = client.post("/convert", files={"file": ("slides", b"deck-bytes")})
        assert response.status_code == 200
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert zf.namelist() == ["index.html", "imsmanifest.xml", "slides/slide-1.png", "slides/slide-2.png"]
        assert list(workspaces_root.iterdir()) == []


class TestPackageResponse:
    def test_unread_stream_releases_workspace(self, settings, workspaces_root):
        with _client(settings) as client:
            with client.stream("POST", "/convert", files={"file": DECK}) as response:
                assert response.status_code == 200
        assert list(workspaces_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_client_gone_before_body_releases_workspace(self, settings, workspaces_root, deck):
        package = await Pipeline(settings, runner=FakeRunner()).convert(deck, "Demo")
        response = PackageResponse(package, headers={})
        scope = {
            "type": "http",
            "asgi": {"version": "3.0", "spec_version": "2.4"},
            "method": "POST",
            "path": "/convert",
            "headers": [],
        }

        async def receive():
            await asyncio.Event().wait()

        async def send(message):
            raise OSError("client went away")

        # Starlette versions differ in how they surface the failed send.
        with pytest.raises(Exception):
            await response(scope, receive, send)

        # The body iterator never started, so only the response could release.
        assert package.job.stage == "render"
        assert list(workspaces_root.iterdir()) == []
