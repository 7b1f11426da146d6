# checkin/identity.py
"""
Client identity: who a completion or a recording belongs to.

Anonymous devices get a lazily created `anon_xxxxxxxx` token kept under the
`cid` key of the device storage (the signed session cookie in the web app, a
JSON file for scripts). A logged-in user is identified by user id instead.
Both variants expose the same `owner_key`, so tracking and uploads never fork.

Creation is read-check-write against the storage, not a lock: any caller may
run it, and a value that already exists is always returned as-is.
"""
from __future__ import annotations

import json
import logging
import random
import string
from collections.abc import MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Literal, Optional

log = logging.getLogger(__name__)

IDENTITY_KEY = "cid"
ANON_PREFIX = "anon_"
ANON_SUFFIX_LEN = 8

IdentityKind = Literal["anonymous", "user"]


class StorageUnavailable(Exception):
    """The device storage could not be read or written."""


def _new_anon_id() -> str:
    alphabet = string.ascii_lowercase + string.digits
    return ANON_PREFIX + "".join(random.choices(alphabet, k=ANON_SUFFIX_LEN))


def get_or_create_identity(storage: MutableMapping) -> str:
    """Return the stored device id, creating and persisting one on first use.

    If the storage is unavailable the caller gets a fresh ephemeral id; it is
    not persisted, so each such call yields a different one.
    """
    try:
        cid = storage.get(IDENTITY_KEY)
        if not cid:
            cid = _new_anon_id()
            storage[IDENTITY_KEY] = cid
            log.info("Created anonymous client id %s", cid)
        return cid
    except StorageUnavailable as e:
        log.warning("Device storage unavailable, using an ephemeral id: %s", e)
        return _new_anon_id()


@dataclass(frozen=True)
class ClientIdentity:
    kind: IdentityKind
    value: str

    @classmethod
    def anonymous(cls, cid: str) -> "ClientIdentity":
        return cls("anonymous", cid)

    @classmethod
    def for_user(cls, user_id: Any) -> "ClientIdentity":
        return cls("user", str(user_id))

    @property
    def owner_key(self) -> str:
        return self.value

    @property
    def is_anonymous(self) -> bool:
        return self.kind == "anonymous"

    def to_dict(self) -> dict:
        return {"cid": self.owner_key, "kind": self.kind}


def resolve_identity(storage: MutableMapping, user: Optional[Any] = None) -> ClientIdentity:
    """Pick the identity for this session: the logged-in user, else the device."""
    if user is not None:
        return ClientIdentity.for_user(user.id)
    return ClientIdentity.anonymous(get_or_create_identity(storage))


class JsonFileStorage(MutableMapping):
    """Device storage backed by a small JSON object on disk."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StorageUnavailable(str(e)) from e
        except json.JSONDecodeError:
            log.warning("Ignoring unreadable storage file %s", self._path)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _save(self, data: dict) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as e:
            raise StorageUnavailable(str(e)) from e

    def __getitem__(self, key: str) -> Any:
        return self._load()[key]

    def __setitem__(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def __delitem__(self, key: str) -> None:
        data = self._load()
        del data[key]
        self._save(data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._load())

    def __len__(self) -> int:
        return len(self._load())
