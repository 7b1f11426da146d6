from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from checkin.capture import (
    FALLBACK_MIME,
    Artifact,
    CaptureSession,
    CaptureState,
    CaptureStateError,
    EmptyCapture,
    PermissionDenied,
    RemoteRecorderSource,
    extension_for,
    negotiate,
)
from checkin.identity import ClientIdentity
from checkin.uploads import UploadGateway

IDENT = ClientIdentity.anonymous("anon_rec00001")


class _SourceReporting(RemoteRecorderSource):
    """A recorder that reports its own MIME type once started."""

    def __init__(self, actual: str) -> None:
        super().__init__(("audio/webm;codecs=opus",))
        self.actual = actual

    def open(self, mime: str) -> str:
        super().open(mime)
        return self.actual


def _session(object_store, source=None, **kwargs) -> CaptureSession:
    gateway = UploadGateway(object_store, "recordings")
    source = source or RemoteRecorderSource(["audio/webm;codecs=opus", "audio/mp4"])
    return CaptureSession(source, gateway, IDENT, "unit 1", **kwargs)


def test_negotiate_picks_first_supported_preference() -> None:
    supported = {"audio/mp4"}
    assert negotiate(["audio/webm;codecs=opus", "audio/mp4"], supported.__contains__) == "audio/mp4"
    assert negotiate(["audio/webm;codecs=opus"], lambda m: False) == ""
    assert negotiate([], lambda m: True) == ""


def test_extension_for_mime_types() -> None:
    assert extension_for("audio/mp4") == "m4a"
    assert extension_for("audio/mpeg") == "mp3"
    assert extension_for("audio/webm;codecs=opus") == "webm"
    assert extension_for("audio/ogg;codecs=opus") == "ogg"
    assert extension_for("") == "webm"
    assert Artifact(b"", "audio/mp4").filename(1700000000000) == "reading-1700000000000.m4a"


def test_chunks_are_assembled_in_arrival_order(object_store) -> None:
    session = _session(object_store, min_bytes=1)
    session.start()
    for chunk in (b"c1-" * 200, b"c2-" * 200, b"c3-" * 200):
        session.append(chunk)

    outcome = session.stop()

    assert outcome.state is CaptureState.UPLOADED
    assert outcome.artifact.data == b"c1-" * 200 + b"c2-" * 200 + b"c3-" * 200
    data, content_type = object_store.objects[("recordings", outcome.receipt.path)]
    assert data == outcome.artifact.data
    assert content_type == "audio/webm;codecs=opus"


def test_zero_chunks_fail_as_empty_capture(object_store) -> None:
    session = _session(object_store)
    session.start()

    outcome = session.stop()

    assert outcome.state is CaptureState.FAILED
    assert isinstance(outcome.error, EmptyCapture)
    assert object_store.upload_calls == 0


def test_capture_below_minimum_size_is_not_uploaded(object_store) -> None:
    session = _session(object_store)
    session.start()
    session.append(b"x" * 1023)

    outcome = session.stop()

    assert isinstance(outcome.error, EmptyCapture)
    assert object_store.upload_calls == 0


def test_upload_error_is_kept_unchanged_and_session_fails(object_store) -> None:
    error = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
    object_store.upload_error = error
    session = _session(object_store)
    session.start()
    session.append(b"a" * 2048)

    outcome = session.stop()

    assert outcome.state is CaptureState.FAILED
    assert outcome.error is error
    assert not outcome.ok


def test_buffer_is_cleared_after_finalize_and_on_restart(object_store) -> None:
    session = _session(object_store)
    session.start()
    session.append(b"a" * 2048)
    session.stop()

    assert session.chunks == ()
    assert session.acknowledge().ok
    assert session.state is CaptureState.IDLE

    session.start()
    assert session.chunks == ()
    session.append(b"b" * 2048)
    outcome = session.stop()
    assert outcome.artifact.data == b"b" * 2048


def test_permission_denied_leaves_session_idle(object_store) -> None:
    session = _session(object_store, source=RemoteRecorderSource(["audio/mp4"], permission="denied"))

    with pytest.raises(PermissionDenied):
        session.start()

    assert session.state is CaptureState.IDLE


def test_mime_falls_back_to_default_and_honours_source_report(object_store) -> None:
    plain = _session(object_store, source=RemoteRecorderSource([]))
    assert plain.start() == FALLBACK_MIME

    reported = _session(object_store, source=_SourceReporting("audio/webm;codecs=opus;rate=48000"))
    assert reported.start() == "audio/webm;codecs=opus;rate=48000"


def test_invalid_transitions_raise(object_store) -> None:
    session = _session(object_store)

    with pytest.raises(CaptureStateError):
        session.append(b"x")
    with pytest.raises(CaptureStateError):
        session.stop()

    session.start()
    with pytest.raises(CaptureStateError):
        session.start()


def test_failed_outcome_can_be_acknowledged_and_restarted(object_store) -> None:
    session = _session(object_store)
    session.start()
    session.stop()
    assert session.state is CaptureState.FAILED

    session.start()
    assert session.recording


def test_zero_chunks_fail_even_without_a_minimum_size(object_store) -> None:
    session = _session(object_store, min_bytes=0)
    session.start()

    outcome = session.stop()

    assert outcome.state is CaptureState.FAILED
    assert isinstance(outcome.error, EmptyCapture)
    assert object_store.upload_calls == 0


def test_discard_drops_buffer_and_returns_to_idle(object_store) -> None:
    session = _session(object_store)
    session.start()
    session.append(b"x" * 2048)

    session.discard()

    assert session.state is CaptureState.IDLE
    assert session.chunks == ()
    assert session.started_at is None
    assert not session.source.active
    with pytest.raises(CaptureStateError):
        session.append(b"late")
