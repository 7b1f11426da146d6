# checkin/uploads.py
"""Deliver finished reading recordings to the recordings bucket."""
from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable
from urllib.parse import quote

from botocore.exceptions import BotoCoreError, ClientError

from .identity import ClientIdentity
from .object_store import ObjectStoreError, R2ObjectStore

if TYPE_CHECKING:
    from .capture import Artifact

log = logging.getLogger(__name__)

# What a failed upload can raise; reported to the student as-is.
UPLOAD_ERRORS = (ClientError, BotoCoreError, ObjectStoreError)


@dataclass(frozen=True)
class UploadReceipt:
    container: str
    path: str
    url: str = ""
    filename: str = ""


def _now_ms() -> int:
    return int(time.time() * 1000)


def _suffix() -> str:
    return secrets.token_hex(4)


class UploadGateway:
    def __init__(
        self,
        store: R2ObjectStore,
        container: str,
        *,
        clock: Callable[[], int] = _now_ms,
        suffix: Callable[[], str] = _suffix,
    ) -> None:
        self.store = store
        self.container = container
        self._clock = clock
        self._suffix = suffix

    def build_path(self, owner_key: str, lesson_key: str, extension: str, stamp: int) -> str:
        """<owner>/<lesson>/<epoch ms>-<random>.<ext>; the random part keeps
        two uploads in the same millisecond apart."""
        lesson = quote(lesson_key, safe="")
        return f"{owner_key}/{lesson}/{stamp}-{self._suffix()}.{extension}"

    def upload(self, identity: ClientIdentity, lesson_key: str, artifact: "Artifact") -> UploadReceipt:
        stamp = self._clock()
        path = self.build_path(identity.owner_key, lesson_key, artifact.extension, stamp)
        # single attempt; UPLOAD_ERRORS propagate unchanged
        self.store.upload(self.container, path, artifact.data, content_type=artifact.mime_type)
        log.info("Recording for %s/%s stored at %s (%d bytes)",
                 identity.owner_key, lesson_key, path, artifact.size)
        url = self.store.public_url(self.container, path) if self.store.public_base else ""
        return UploadReceipt(container=self.container, path=path, url=url, filename=artifact.filename(stamp))
