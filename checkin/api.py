# checkin/api.py
from __future__ import annotations

import threading
import time
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request, session

from .auth import get_current_user
from .capture import (
    MIN_ARTIFACT_BYTES,
    CaptureSession,
    CaptureStateError,
    EmptyCapture,
    PermissionDenied,
    RemoteRecorderSource,
)
from .identity import ClientIdentity, resolve_identity
from .lessons import BucketListingSource, LessonTableSource, load_lessons
from .listens import CompletionTracker
from .object_store import R2ObjectStore
from .store import RelationalStore
from .uploads import UploadGateway

api_bp = Blueprint("api", __name__)

# In-memory registry of recordings in progress, one per lesson card:
# (owner_key, lesson_key) -> CaptureSession
_active: dict[tuple[str, str], CaptureSession] = {}
_active_lock = threading.Lock()


# ---------------------------
# Helpers
# ---------------------------
def _object_store() -> R2ObjectStore:
    return current_app.extensions["checkin.object_store"]


def _device_storage():
    # Flask's signed cookie plays the role of the browser's local storage.
    session.permanent = True
    return session


def current_identity() -> ClientIdentity:
    return resolve_identity(_device_storage(), get_current_user())


def _tracker() -> CompletionTracker:
    return CompletionTracker(RelationalStore(), local=_device_storage())


def _gateway() -> UploadGateway:
    return UploadGateway(_object_store(), current_app.config["RECORDINGS_BUCKET"])


def _evict_stale(max_age: float) -> None:
    """Drop recordings whose client never called stop. Caller holds _active_lock."""
    now = time.monotonic()
    for slot, capture in list(_active.items()):
        if capture.started_at is None or now - capture.started_at > max_age:
            capture.discard()
            del _active[slot]
            current_app.logger.info("Dropped abandoned recording %s/%s", *slot)


def _lesson_source(kind: str):
    cfg = current_app.config
    if kind == "rows":
        return LessonTableSource(_object_store(), RelationalStore())
    return BucketListingSource(
        _object_store(),
        cfg["LESSONS_BUCKET"],
        cfg.get("LIST_PREFIX") or "",
        limit=int(cfg.get("LIST_LIMIT") or 1000),
    )


# ---------------------------
# Health / identity
# ---------------------------
@api_bp.route("/healthz", methods=["GET"])
def healthz():
    return jsonify({"ok": True, "time": datetime.now(timezone.utc).isoformat()})


@api_bp.route("/identity", methods=["GET"])
def identity():
    return jsonify(current_identity().to_dict())


# ---------------------------
# Lessons
# ---------------------------
@api_bp.route("/lessons", methods=["GET"])
def list_lessons():
    kind = (request.args.get("source") or current_app.config.get("LESSON_SOURCE") or "listing").lower()
    if kind not in ("listing", "rows"):
        return jsonify({"message": "source must be 'listing' or 'rows'"}), 400

    listing = load_lessons(_lesson_source(kind))
    return jsonify({
        "lessons": [r.to_dict() for r in listing.resources],
        "error": listing.error,
        "refresh_ms": current_app.config.get("AUTO_REFRESH_MS"),
    })


@api_bp.route("/lessons/<path:lesson_key>/listened", methods=["GET"])
def get_listened(lesson_key):
    ident = current_identity()
    return jsonify({"lesson_key": lesson_key, "listened": _tracker().is_listened(lesson_key, ident)})


@api_bp.route("/lessons/<path:lesson_key>/listened", methods=["POST"])
def post_listened(lesson_key):
    ident = current_identity()
    listened = _tracker().mark_completed(lesson_key, ident)
    return jsonify({"lesson_key": lesson_key, "listened": listened})


# ---------------------------
# Recording
# ---------------------------
@api_bp.route("/lessons/<path:lesson_key>/recording/start", methods=["POST"])
def start_recording(lesson_key):
    data = request.get_json(silent=True) or {}
    supported = data.get("supported") or []
    if not isinstance(supported, list):
        return jsonify({"message": "supported must be a list of MIME types"}), 400

    ident = current_identity()
    slot = (ident.owner_key, lesson_key)
    source = RemoteRecorderSource(
        [str(s) for s in supported],
        permission=str(data.get("permission") or "granted"),
    )
    capture = CaptureSession(
        source,
        _gateway(),
        ident,
        lesson_key,
        min_bytes=int(current_app.config.get("MIN_RECORDING_BYTES", MIN_ARTIFACT_BYTES)),
    )

    with _active_lock:
        _evict_stale(float(current_app.config.get("RECORDING_MAX_SECONDS") or 600))
        existing = _active.get(slot)
        if existing is not None and existing.recording:
            return jsonify({"message": "Recording already active for this lesson."}), 409
        try:
            mime = capture.start()
        except PermissionDenied as e:
            _active.pop(slot, None)
            return jsonify({"status": "idle", "message": str(e)}), 403
        _active[slot] = capture

    return jsonify({"status": capture.state.value, "mime_type": mime})


@api_bp.route("/lessons/<path:lesson_key>/recording/chunk", methods=["POST"])
def append_chunk(lesson_key):
    ident = current_identity()
    capture = _active.get((ident.owner_key, lesson_key))
    if capture is None:
        return jsonify({"message": "No active recording for this lesson."}), 409
    try:
        count = capture.append(request.get_data(cache=False))
    except CaptureStateError as e:
        return jsonify({"message": str(e)}), 409
    return jsonify({"chunks": count, "bytes": capture.buffered_bytes})


@api_bp.route("/lessons/<path:lesson_key>/recording/stop", methods=["POST"])
def stop_recording(lesson_key):
    ident = current_identity()
    with _active_lock:
        capture = _active.pop((ident.owner_key, lesson_key), None)
    if capture is None:
        return jsonify({"message": "No active recording for this lesson."}), 409

    try:
        outcome = capture.stop()
    except CaptureStateError as e:
        return jsonify({"message": str(e)}), 409
    capture.acknowledge()

    if outcome.ok:
        receipt = outcome.receipt
        return jsonify({
            "status": outcome.state.value,
            "path": receipt.path,
            "url": receipt.url,
            "filename": receipt.filename,
            "bytes": outcome.artifact.size,
            "mime_type": outcome.artifact.mime_type,
        }), 201

    if isinstance(outcome.error, EmptyCapture):
        return jsonify({"status": outcome.state.value, "message": str(outcome.error)}), 422

    current_app.logger.error("Recording upload failed for %s/%s: %s", ident.owner_key, lesson_key, outcome.error)
    return jsonify({"status": outcome.state.value, "message": str(outcome.error)}), 502
