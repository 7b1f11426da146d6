# checkin/capture.py
"""
Reading-sample capture: one recording per lesson card.

    idle --start--> recording --append*--> recording --stop--> finalizing
    finalizing --> uploaded | failed --acknowledge--> idle

The chunk buffer is cleared when a recording starts and again as soon as
stop() has assembled the artifact (before the upload runs), so a slow upload
of one take can never see chunks of the next.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol, Sequence

from .identity import ClientIdentity
from .uploads import UPLOAD_ERRORS, UploadGateway, UploadReceipt

log = logging.getLogger(__name__)

# Opus-in-WebM where the browser has it, MP4/AAC for Safari/iOS.
DEFAULT_PREFERENCES = ("audio/webm;codecs=opus", "audio/mp4")
FALLBACK_MIME = "audio/webm"
MIN_ARTIFACT_BYTES = 1024


class CaptureState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    UPLOADED = "uploaded"
    FAILED = "failed"


class CaptureError(Exception):
    """A capture problem the student should be told about."""


class PermissionDenied(CaptureError):
    pass


class EmptyCapture(CaptureError):
    pass


class CaptureStateError(RuntimeError):
    """Operation not valid in the session's current state."""


def negotiate(preferences: Iterable[str], is_supported: Callable[[str], bool]) -> str:
    """First supported MIME type, or "" to let the recorder pick its default."""
    for mime in preferences:
        if is_supported(mime):
            return mime
    return ""


def extension_for(mime: str) -> str:
    mime = (mime or "").lower()
    if "mp4" in mime:
        return "m4a"
    if "mpeg" in mime:
        return "mp3"
    if "ogg" in mime:
        return "ogg"
    if "wav" in mime:
        return "wav"
    return "webm"


@dataclass(frozen=True)
class Artifact:
    data: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return extension_for(self.mime_type)

    def filename(self, now_ms: Optional[int] = None) -> str:
        stamp = now_ms if now_ms is not None else int(time.time() * 1000)
        return f"reading-{stamp}.{self.extension}"


@dataclass(frozen=True)
class CaptureOutcome:
    state: CaptureState
    artifact: Optional[Artifact] = None
    receipt: Optional[UploadReceipt] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.state is CaptureState.UPLOADED


class CaptureSource(Protocol):
    def is_supported(self, mime: str) -> bool: ...

    def open(self, mime: str) -> str:
        """Start capturing; return the MIME type actually in use ("" if unknown).
        Raise PermissionDenied when the microphone is refused."""

    def close(self) -> None: ...


class RemoteRecorderSource:
    """The browser's recorder, as described by its start request."""

    def __init__(self, supported: Sequence[str] = (), *, permission: str = "granted") -> None:
        self.supported = tuple(s for s in supported if s)
        self.permission = permission
        self.active = False

    def is_supported(self, mime: str) -> bool:
        return mime in self.supported

    def open(self, mime: str) -> str:
        if self.permission != "granted":
            raise PermissionDenied("microphone permission was not granted")
        self.active = True
        return mime

    def close(self) -> None:
        self.active = False


class CaptureSession:
    def __init__(
        self,
        source: CaptureSource,
        gateway: UploadGateway,
        identity: ClientIdentity,
        lesson_key: str,
        *,
        preferences: Sequence[str] = DEFAULT_PREFERENCES,
        min_bytes: int = MIN_ARTIFACT_BYTES,
    ) -> None:
        self.source = source
        self.gateway = gateway
        self.identity = identity
        self.lesson_key = lesson_key
        self.preferences = tuple(preferences)
        self.min_bytes = min_bytes

        self.state = CaptureState.IDLE
        self.mime_type = ""
        self.started_at: Optional[float] = None
        self._chunks: list[bytes] = []
        self.outcome: Optional[CaptureOutcome] = None

    @property
    def recording(self) -> bool:
        return self.state is CaptureState.RECORDING

    @property
    def chunks(self) -> tuple[bytes, ...]:
        return tuple(self._chunks)

    @property
    def buffered_bytes(self) -> int:
        return sum(len(c) for c in self._chunks)

    def start(self) -> str:
        if self.state in (CaptureState.RECORDING, CaptureState.FINALIZING):
            raise CaptureStateError(f"cannot start while {self.state.value}")

        self._chunks.clear()
        self.outcome = None
        preferred = negotiate(self.preferences, self.source.is_supported)
        try:
            actual = self.source.open(preferred)
        except PermissionDenied:
            self.state = CaptureState.IDLE
            log.warning("Microphone refused for %s/%s", self.identity.owner_key, self.lesson_key)
            raise

        self.mime_type = actual or preferred or FALLBACK_MIME
        self.state = CaptureState.RECORDING
        self.started_at = time.monotonic()
        log.debug("Recording %s/%s as %s", self.identity.owner_key, self.lesson_key, self.mime_type)
        return self.mime_type

    def append(self, chunk: bytes) -> int:
        if self.state is not CaptureState.RECORDING:
            raise CaptureStateError(f"cannot append while {self.state.value}")
        self._chunks.append(bytes(chunk))
        return len(self._chunks)

    def stop(self) -> CaptureOutcome:
        if self.state is not CaptureState.RECORDING:
            raise CaptureStateError(f"cannot stop while {self.state.value}")

        self.source.close()
        self.state = CaptureState.FINALIZING
        artifact = Artifact(data=b"".join(self._chunks), mime_type=self.mime_type)
        self._chunks.clear()

        if artifact.size == 0 or artifact.size < self.min_bytes:
            error = EmptyCapture(
                f"recording is empty or too short ({artifact.size} bytes); record a few more seconds"
            )
            log.info("Discarding short recording for %s/%s (%d bytes)",
                     self.identity.owner_key, self.lesson_key, artifact.size)
            return self._finish(CaptureState.FAILED, artifact=artifact, error=error)

        try:
            receipt = self.gateway.upload(self.identity, self.lesson_key, artifact)
        except UPLOAD_ERRORS as e:
            log.error("Upload failed for %s/%s: %s", self.identity.owner_key, self.lesson_key, e)
            return self._finish(CaptureState.FAILED, artifact=artifact, error=e)

        return self._finish(CaptureState.UPLOADED, artifact=artifact, receipt=receipt)

    def _finish(self, state: CaptureState, **kwargs) -> CaptureOutcome:
        self.state = state
        self.outcome = CaptureOutcome(state=state, **kwargs)
        return self.outcome

    def discard(self) -> None:
        """Drop a recording nobody is going to stop; the buffer goes with it."""
        self.source.close()
        self._chunks.clear()
        self.state = CaptureState.IDLE
        self.outcome = None
        self.mime_type = ""
        self.started_at = None

    def acknowledge(self) -> Optional[CaptureOutcome]:
        """Caller has seen the outcome; back to idle."""
        outcome = self.outcome
        if self.state in (CaptureState.UPLOADED, CaptureState.FAILED):
            self.state = CaptureState.IDLE
            self.outcome = None
            self.mime_type = ""
            self.started_at = None
        return outcome
