# checkin/listens.py
"""
"Listened" tracking per (owner, lesson).

mark_completed flips the device-local flag first and only then writes the
remote row, so the check mark shows without waiting on the network. A failed
write is logged and left alone: the local flag stays set for this device and
the remote table catches up the next time the lesson is played.

Writes are at-least-once intent; the (cid, lesson_key) unique constraint turns
them into at most one stored record.
"""
from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from .identity import ClientIdentity
from .models import Listen
from .store import RelationalStore

log = logging.getLogger(__name__)

CONFLICT_TARGET = ("cid", "lesson_key")


def local_flag_key(lesson_key: str, identity: ClientIdentity) -> str:
    # one flag per owner sharing this device
    return f"done:{identity.owner_key}:{lesson_key}"


class CompletionTracker:
    def __init__(self, store: RelationalStore, local: Optional[MutableMapping] = None) -> None:
        self.store = store
        self.local = local if local is not None else {}

    def has_completed(self, lesson_key: str, identity: ClientIdentity) -> bool:
        try:
            n = self.store.count(Listen, lesson_key=lesson_key, cid=identity.owner_key)
        except SQLAlchemyError as e:
            self.store.session.rollback()
            log.warning("Completion lookup failed for %s/%s: %s", identity.owner_key, lesson_key, e)
            return False
        return n > 0

    def is_marked_locally(self, lesson_key: str, identity: ClientIdentity) -> bool:
        return self.local.get(local_flag_key(lesson_key, identity)) == "1"

    def is_listened(self, lesson_key: str, identity: ClientIdentity) -> bool:
        return self.is_marked_locally(lesson_key, identity) or self.has_completed(lesson_key, identity)

    def mark_completed(self, lesson_key: str, identity: ClientIdentity) -> bool:
        self.local[local_flag_key(lesson_key, identity)] = "1"
        try:
            self.store.upsert(
                Listen,
                [{"cid": identity.owner_key, "lesson_key": lesson_key}],
                conflict_target=CONFLICT_TARGET,
            )
        except SQLAlchemyError as e:
            self.store.session.rollback()
            log.error("Recording completion failed for %s/%s: %s", identity.owner_key, lesson_key, e)
        return True
