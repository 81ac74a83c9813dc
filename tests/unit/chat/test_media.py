"""Tests for media preparation and the Gemini file store client."""

from __future__ import annotations

import base64
import logging
import tempfile
from unittest.mock import MagicMock

import httpx
import pytest
from google.genai import errors as genai_errors
from google.genai import types

from stackmemory.chat.media import (
    GeminiFileStore,
    MediaPreparer,
    RemoteFile,
    media_kind,
    parse_data_uri,
)
from stackmemory.errors import InvalidRequest, MediaProcessingFailed, MediaTimeout

PNG = "data:image/png;base64," + base64.b64encode(b"\x89PNG fake").decode()
MP4 = "data:video/mp4;base64," + base64.b64encode(b"fake video").decode()


def _remote(state, name="files/abc"):
    return RemoteFile(name=name, uri=f"https://generativelanguage.googleapis.com/v1beta/{name}", state=state)


def _download_client(body=b"video bytes", content_type="video/mp4", status=200):
    def handler(request):
        headers = {"content-type": content_type} if content_type else {}
        return httpx.Response(status, content=body, headers=headers)

    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def store():
    return MagicMock(spec=GeminiFileStore)


@pytest.fixture
def scratch_root(tmp_path, monkeypatch):
    root = tmp_path / "scratch"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root


def _preparer(store, sleeps, http=None, **kw):
    return MediaPreparer(store, http or _download_client(), sleep=sleeps.append, poll_interval=2.0, **kw)


# ---------------------------------------------------------------------------
# Data URIs
# ---------------------------------------------------------------------------


def test_parse_data_uri():
    mime, payload = parse_data_uri(PNG)
    assert mime == "image/png"
    assert base64.b64decode(payload) == b"\x89PNG fake"


@pytest.mark.parametrize("media", ["not a uri", "data:image/png,rawdata", "data:image/png;base64,@@@@"])
def test_malformed_data_uri(media):
    with pytest.raises(InvalidRequest):
        parse_data_uri(media)


@pytest.mark.parametrize("mime, kind", [("image/jpeg", "image"), ("VIDEO/webm", "video")])
def test_media_kind(mime, kind):
    assert media_kind(mime) == kind


def test_media_kind_rejects_audio():
    with pytest.raises(InvalidRequest) as exc_info:
        media_kind("audio/mpeg")
    assert exc_info.value.status_code == 400


def test_inline_image_part(store, sleeps):
    media = _preparer(store, sleeps).prepare(media=PNG)
    assert media.kind == "image"
    assert media.part == {"type": "image_url", "image_url": {"url": PNG}}
    store.upload.assert_not_called()


def test_inline_video_part(store, sleeps):
    media = _preparer(store, sleeps).prepare(media=MP4)
    assert media.kind == "video"
    assert media.part["file"]["file_data"] == MP4


def test_no_media(store, sleeps):
    assert _preparer(store, sleeps).prepare() is None


# ---------------------------------------------------------------------------
# Remote URLs
# ---------------------------------------------------------------------------


def test_remote_video_uploaded_and_polled(store, sleeps, scratch_root):
    store.upload.return_value = _remote("PROCESSING")
    store.get.side_effect = [_remote("PROCESSING"), _remote("ACTIVE")]

    media = _preparer(store, sleeps).prepare(media_url="https://cdn.example.com/demo.mp4")

    assert media.kind == "video"
    assert media.part == {
        "type": "file",
        "file": {"file_id": "https://generativelanguage.googleapis.com/v1beta/files/abc", "format": "video/mp4"},
    }
    assert media.remote_name == "files/abc"
    assert sleeps == [2.0, 2.0]
    path, mime, name = store.upload.call_args.args
    assert (mime, name) == ("video/mp4", "demo.mp4")
    assert list(scratch_root.iterdir()) == []
    store.delete.assert_not_called()


def test_scratch_dir_removed_when_upload_fails(store, sleeps, scratch_root):
    store.upload.side_effect = MediaProcessingFailed("upload 500")
    with pytest.raises(MediaProcessingFailed):
        _preparer(store, sleeps).prepare(media_url="https://cdn.example.com/demo.mp4")
    assert list(scratch_root.iterdir()) == []


def test_polling_gives_up_after_max_attempts(store, sleeps):
    store.upload.return_value = _remote("PROCESSING")
    store.get.return_value = _remote("PROCESSING")

    with pytest.raises(MediaTimeout) as exc_info:
        _preparer(store, sleeps, max_poll_attempts=3).prepare(media_url="https://x.test/a.mp4")

    assert exc_info.value.status_code == 504
    assert store.get.call_count == 3
    assert len(sleeps) == 3
    store.delete.assert_called_once_with("files/abc")


def test_failed_processing_state(store, sleeps):
    store.upload.return_value = _remote("PROCESSING")
    store.get.return_value = _remote("FAILED")
    with pytest.raises(MediaProcessingFailed, match="FAILED"):
        _preparer(store, sleeps).prepare(media_url="https://x.test/a.mp4")
    store.delete.assert_called_once_with("files/abc")


def test_mime_guessed_from_extension(store, sleeps):
    store.upload.return_value = _remote("ACTIVE")
    http = _download_client(content_type="application/octet-stream")
    media = _preparer(store, sleeps, http=http).prepare(media_url="https://x.test/shot.png")
    assert media.kind == "image"
    assert media.mime_type == "image/png"


def test_download_too_large(store, sleeps):
    http = _download_client(body=b"x" * 64)
    with pytest.raises(InvalidRequest, match="exceeds"):
        _preparer(store, sleeps, http=http, max_download_bytes=10).prepare(media_url="https://x.test/a.mp4")
    store.upload.assert_not_called()


def test_download_error(store, sleeps):
    http = _download_client(status=404)
    with pytest.raises(MediaProcessingFailed):
        _preparer(store, sleeps, http=http).prepare(media_url="https://x.test/a.mp4")


def test_unsupported_remote_type(store, sleeps):
    http = _download_client(content_type="application/pdf")
    with pytest.raises(InvalidRequest):
        _preparer(store, sleeps, http=http).prepare(media_url="https://x.test/doc.pdf")
    store.upload.assert_not_called()


@pytest.mark.parametrize("url", ["ftp://x.test/a.mp4", "file:///etc/passwd", "not-a-url"])
def test_non_http_urls_rejected(store, sleeps, url):
    with pytest.raises(InvalidRequest):
        _preparer(store, sleeps).prepare(media_url=url)


def test_release_deletes_uploaded_file(store, sleeps):
    store.upload.return_value = _remote("ACTIVE")
    preparer = _preparer(store, sleeps)
    media = preparer.prepare(media_url="https://x.test/a.mp4")

    preparer.release(media)

    store.delete.assert_called_once_with("files/abc")


def test_release_ignores_inline_media(store, sleeps):
    preparer = _preparer(store, sleeps)
    preparer.release(preparer.prepare(media=PNG))
    preparer.release(None)
    store.delete.assert_not_called()


# ---------------------------------------------------------------------------
# GeminiFileStore
# ---------------------------------------------------------------------------


def _sdk_file(state, name="files/abc"):
    return types.File(name=name, uri=f"https://g/{name}", state=state, mime_type="video/mp4")


@pytest.fixture
def genai_client():
    return MagicMock()


@pytest.fixture
def file_store(genai_client):
    return GeminiFileStore("test-key", client=genai_client)


def _not_found():
    return genai_errors.ClientError(404, {"error": {"code": 404, "message": "File not found", "status": "NOT_FOUND"}})


def test_upload_passes_mime_and_display_name(file_store, genai_client, tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"0123456789")
    genai_client.files.upload.return_value = _sdk_file(types.FileState.PROCESSING)

    remote = file_store.upload(path, "video/mp4", "clip.mp4")

    assert remote == RemoteFile("files/abc", "https://g/files/abc", "PROCESSING", "video/mp4")
    kwargs = genai_client.files.upload.call_args.kwargs
    assert kwargs["file"] == str(path)
    assert kwargs["config"].mime_type == "video/mp4"
    assert kwargs["config"].display_name == "clip.mp4"


@pytest.mark.parametrize("error", [_not_found(), httpx.ConnectError("refused")])
def test_upload_failure(file_store, genai_client, tmp_path, error):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"x")
    genai_client.files.upload.side_effect = error
    with pytest.raises(MediaProcessingFailed):
        file_store.upload(path, "video/mp4", "clip.mp4")


def test_get_state(file_store, genai_client):
    genai_client.files.get.return_value = _sdk_file(types.FileState.ACTIVE)
    assert file_store.get("files/abc").state == "ACTIVE"
    genai_client.files.get.assert_called_once_with(name="files/abc")


def test_get_without_state_is_unspecified(file_store, genai_client):
    genai_client.files.get.return_value = types.File(name="files/abc")
    assert file_store.get("files/abc").state == "STATE_UNSPECIFIED"


def test_get_failure(file_store, genai_client):
    genai_client.files.get.side_effect = _not_found()
    with pytest.raises(MediaProcessingFailed, match="files/missing"):
        file_store.get("files/missing")


def test_delete(file_store, genai_client):
    file_store.delete("files/abc")
    genai_client.files.delete.assert_called_once_with(name="files/abc")


def test_delete_failure_is_logged(file_store, genai_client, caplog):
    genai_client.files.delete.side_effect = _not_found()
    with caplog.at_level(logging.WARNING):
        file_store.delete("files/abc")
    assert "Could not delete files/abc" in caplog.text


def test_missing_api_key_fails_on_first_upload(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"x")
    with pytest.raises(MediaProcessingFailed, match="GEMINI_API_KEY"):
        GeminiFileStore(None).upload(path, "video/mp4", "clip.mp4")
