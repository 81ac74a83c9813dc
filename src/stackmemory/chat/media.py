"""Image / video input for chat.

Two input forms:
  - inline ``data:<mime>;base64,<payload>`` URI → sent to the model as-is
  - remote URL → downloaded to a scratch dir, uploaded to the Gemini Files
    API, polled until processed, then referenced by file URI

The scratch copy is removed as soon as the upload call returns, whether it
succeeded or not. Polling is bounded: ``max_poll_attempts`` × ``poll_interval``.
The uploaded copy is deleted when polling fails, and by ``release()`` once the
reply has been generated.
"""

from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
import re
import shutil
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from stackmemory.errors import InvalidRequest, MediaProcessingFailed, MediaTimeout

logger = logging.getLogger(__name__)

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<payload>.+)$", re.DOTALL)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class MediaPart:
    """A prepared media attachment.

    Attributes:
        kind: ``image`` or ``video``.
        mime_type: MIME type of the media.
        part: OpenAI-style content part passed to litellm.completion().
        remote_name: Provider file name when the media was uploaded.
    """

    kind: str
    mime_type: str
    part: dict
    remote_name: str | None = None


@dataclass
class RemoteFile:
    """State of a file in the provider file store."""

    name: str  # e.g. "files/abc123"
    uri: str
    state: str  # PROCESSING | ACTIVE | FAILED
    mime_type: str = ""

    @classmethod
    def from_sdk(cls, file: types.File) -> RemoteFile:
        return cls(
            name=file.name or "",
            uri=file.uri or "",
            state=file.state.name if file.state is not None else "STATE_UNSPECIFIED",
            mime_type=file.mime_type or "",
        )


def media_kind(mime_type: str) -> str:
    """Map a MIME type to ``image`` or ``video``.

    Raises:
        InvalidRequest: For any other MIME type.
    """
    major = mime_type.split("/", 1)[0].lower()
    if major in ("image", "video"):
        return major
    raise InvalidRequest(
        f"unsupported media type '{mime_type}'",
        user_message="Only image and video attachments are supported",
    )


def parse_data_uri(media: str) -> tuple[str, str]:
    """Return (mime_type, base64_payload) from a base64 data URI.

    Raises:
        InvalidRequest: If *media* is not a well-formed base64 data URI.
    """
    match = _DATA_URI_RE.match(media.strip())
    if match is None:
        raise InvalidRequest("media is not a base64 data URI", user_message="Invalid media payload")
    payload = match.group("payload")
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidRequest(f"media payload is not base64: {exc}", user_message="Invalid media payload") from exc
    return match.group("mime"), payload


# ---------------------------------------------------------------------------
# Gemini Files API
# ---------------------------------------------------------------------------


class GeminiFileStore:
    """Upload, status and delete calls against the Gemini Files API.

    The SDK client is built on first use, so a missing key only fails the
    requests that actually need remote media.

    Args:
        api_key: Gemini API key.
        client: Optional ``genai.Client`` (tests pass a mock).
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        client: genai.Client | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._api_key = api_key or ""
        self._client = client
        self.timeout = timeout

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            if not self._api_key:
                raise MediaProcessingFailed("GEMINI_API_KEY is not set")
            self._client = genai.Client(
                api_key=self._api_key,
                http_options=types.HttpOptions(timeout=int(self.timeout * 1000)),
            )
        return self._client

    def upload(self, path: Path, mime_type: str, display_name: str) -> RemoteFile:
        """Upload *path* and return the created file (usually still PROCESSING).

        Raises:
            MediaProcessingFailed: If the upload call fails.
        """
        try:
            uploaded = self.client.files.upload(
                file=str(path),
                config=types.UploadFileConfig(mime_type=mime_type, display_name=display_name),
            )
        except (genai_errors.APIError, httpx.HTTPError) as exc:
            raise MediaProcessingFailed(f"upload failed: {type(exc).__name__}: {exc}") from exc
        return RemoteFile.from_sdk(uploaded)

    def get(self, name: str) -> RemoteFile:
        """Return the current state of an uploaded file.

        Raises:
            MediaProcessingFailed: If the status request fails.
        """
        try:
            return RemoteFile.from_sdk(self.client.files.get(name=name))
        except (genai_errors.APIError, httpx.HTTPError) as exc:
            raise MediaProcessingFailed(f"status check failed for {name}: {exc}") from exc

    def delete(self, name: str) -> None:
        """Remove an uploaded file. Failures are logged, not raised."""
        try:
            self.client.files.delete(name=name)
        except (genai_errors.APIError, httpx.HTTPError, MediaProcessingFailed) as exc:
            logger.warning("Could not delete %s from the file store: %s", name, exc)
            return
        logger.debug("Deleted %s from the file store", name)


# ---------------------------------------------------------------------------
# Preparer
# ---------------------------------------------------------------------------


class MediaPreparer:
    """Turns a request's media fields into a model content part.

    Args:
        file_store: Provider file store for remote media.
        http: Client used to download remote media.
        poll_interval: Seconds between status polls.
        max_poll_attempts: Polls before giving up with MediaTimeout.
        max_download_bytes: Larger downloads are rejected.
        sleep: Injected for tests.
    """

    def __init__(
        self,
        file_store: GeminiFileStore,
        http: httpx.Client | None = None,
        *,
        poll_interval: float = 2.0,
        max_poll_attempts: int = 30,
        max_download_bytes: int = 100 * 1024 * 1024,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = file_store
        self._http = http or httpx.Client(timeout=60.0, follow_redirects=True)
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.max_download_bytes = max_download_bytes
        self._sleep = sleep

    def prepare(self, *, media: str | None = None, media_url: str | None = None) -> MediaPart | None:
        """Return a MediaPart for whichever media field is set, or None.

        Raises:
            InvalidRequest: Malformed data URI, unsupported type, bad URL.
            MediaProcessingFailed: Download, upload or provider processing failed.
            MediaTimeout: Provider still processing after the last poll.
        """
        if media:
            return self.from_data_uri(media)
        if media_url:
            return self.from_url(media_url)
        return None

    def from_data_uri(self, media: str) -> MediaPart:
        mime_type, _ = parse_data_uri(media)
        kind = media_kind(mime_type)
        if kind == "image":
            part = {"type": "image_url", "image_url": {"url": media.strip()}}
        else:
            part = {"type": "file", "file": {"file_data": media.strip()}}
        return MediaPart(kind=kind, mime_type=mime_type, part=part)

    def from_url(self, url: str) -> MediaPart:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidRequest(f"media URL must be http(s): {url!r}", user_message="Invalid media URL")

        scratch = Path(tempfile.mkdtemp(prefix="stackmemory-media-"))
        try:
            path, mime_type = self._download(url, scratch)
            kind = media_kind(mime_type)
            display_name = Path(parsed.path).name or "upload"
            remote = self._store.upload(path, mime_type, display_name)
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        try:
            remote = self.wait_until_active(remote)
        except (MediaProcessingFailed, MediaTimeout):
            self._store.delete(remote.name)
            raise
        logger.info("Media %s ready as %s", display_name, remote.name)
        part = {"type": "file", "file": {"file_id": remote.uri, "format": mime_type}}
        return MediaPart(kind=kind, mime_type=mime_type, part=part, remote_name=remote.name)

    def release(self, media: MediaPart | None) -> None:
        """Delete the provider copy of *media* once the model no longer needs it."""
        if media is not None and media.remote_name:
            self._store.delete(media.remote_name)

    def wait_until_active(self, remote: RemoteFile) -> RemoteFile:
        """Poll until *remote* leaves PROCESSING.

        Raises:
            MediaProcessingFailed: If processing ends in any state but ACTIVE.
            MediaTimeout: If still PROCESSING after max_poll_attempts polls.
        """
        attempts = 0
        while remote.state == "PROCESSING":
            if attempts >= self.max_poll_attempts:
                raise MediaTimeout(
                    f"{remote.name} still processing after {attempts} polls "
                    f"({attempts * self.poll_interval:.0f}s)"
                )
            self._sleep(self.poll_interval)
            remote = self._store.get(remote.name)
            attempts += 1

        if remote.state != "ACTIVE":
            raise MediaProcessingFailed(f"{remote.name} ended in state {remote.state}")
        return remote

    def _download(self, url: str, scratch: Path) -> tuple[Path, str]:
        target = scratch / "media"
        try:
            with self._http.stream("GET", url) as response:
                response.raise_for_status()
                mime_type = response.headers.get("content-type", "").split(";")[0].strip()
                if not mime_type or mime_type == "application/octet-stream":
                    mime_type = mimetypes.guess_type(urlparse(url).path)[0] or ""
                received = 0
                with target.open("wb") as fh:
                    for block in response.iter_bytes():
                        received += len(block)
                        if received > self.max_download_bytes:
                            raise InvalidRequest(
                                f"media at {url} exceeds {self.max_download_bytes} bytes",
                                user_message="Media file is too large",
                            )
                        fh.write(block)
        except httpx.HTTPError as exc:
            raise MediaProcessingFailed(f"download failed: {type(exc).__name__}: {exc}") from exc
        if not mime_type:
            raise InvalidRequest(f"cannot determine media type of {url}", user_message="Unsupported media type")
        return target, mime_type
