# checkin/lessons.py
"""
Lesson resources: pair each lesson's audio with its handout PDF.

Two sources feed the same LessonResource shape:
  - BucketListingSource: a flat file listing of one bucket; "unit1.mp3" and
    "unit1.pdf" share the base key "unit1".
  - LessonTableSource: rows of the `lessons` table whose audio_ref/pdf_ref
    are "<container>/<path>" strings.

The list is rebuilt in full on every load. A failed load is an empty list
plus an error message, never an exception for the page.
"""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Iterable, Optional, Protocol

from .models import Lesson
from .object_store import R2ObjectStore
from .store import RelationalStore

log = logging.getLogger(__name__)

AUDIO_SUFFIXES = ("mp3", "m4a", "webm", "wav", "ogg")
DOCUMENT_SUFFIXES = ("pdf",)

_AUDIO_RE = re.compile(r"\.(%s)$" % "|".join(AUDIO_SUFFIXES), re.IGNORECASE)
_DOC_RE = re.compile(r"\.(%s)$" % "|".join(DOCUMENT_SUFFIXES), re.IGNORECASE)
_ANY_RE = re.compile(r"\.(%s)$" % "|".join(AUDIO_SUFFIXES + DOCUMENT_SUFFIXES), re.IGNORECASE)


@dataclass(frozen=True)
class LessonResource:
    key: str
    audio_url: str = ""
    pdf_url: str = ""
    title: Optional[str] = None

    @property
    def playable(self) -> bool:
        return bool(self.audio_url)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["title"] = self.title or self.key
        d["playable"] = self.playable
        return d


@dataclass
class LessonListing:
    resources: list[LessonResource] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class LessonSource(Protocol):
    def fetch(self) -> list[LessonResource]: ...


def base_key(name: str) -> str:
    return _ANY_RE.sub("", name)


def pair_media(names: Iterable[str]) -> dict[str, dict[str, str]]:
    """Group file names by base key -> {"audio": name, "pdf": name}.

    Names are visited in sorted order and the first audio/PDF per key wins,
    so "a.m4a" beats "a.mp3" no matter how the bucket lists them.
    """
    groups: dict[str, dict[str, str]] = {}
    for name in sorted(set(names)):
        entry = groups.setdefault(base_key(name), {})
        if _AUDIO_RE.search(name):
            entry.setdefault("audio", name)
        elif _DOC_RE.search(name):
            entry.setdefault("pdf", name)
    return groups


def split_ref(ref: Optional[str]) -> Optional[tuple[str, str]]:
    """"lessons/a/b.mp3" -> ("lessons", "a/b.mp3"); None when there is no usable ref."""
    ref = (ref or "").strip().lstrip("/")
    container, sep, path = ref.partition("/")
    if not sep or not container or not path:
        return None
    return container, path


class BucketListingSource:
    def __init__(self, store: R2ObjectStore, container: str, prefix: str = "", *, limit: int = 1000) -> None:
        self.store = store
        self.container = container
        self.prefix = prefix
        self.limit = limit

    def _url(self, name: Optional[str]) -> str:
        if not name:
            return ""
        return self.store.public_url(self.container, f"{self.prefix}{name}")

    def fetch(self) -> list[LessonResource]:
        names = self.store.list(self.container, self.prefix, limit=self.limit)
        out = []
        for key, entry in pair_media(names).items():
            audio_url = self._url(entry.get("audio"))
            pdf_url = self._url(entry.get("pdf"))
            if audio_url or pdf_url:
                out.append(LessonResource(key=key, audio_url=audio_url, pdf_url=pdf_url))
        out.sort(key=lambda r: r.key)
        return out


class LessonTableSource:
    def __init__(self, store: R2ObjectStore, relational: RelationalStore) -> None:
        self.store = store
        self.relational = relational

    def _url(self, lesson_key: str, ref: Optional[str]) -> str:
        parts = split_ref(ref)
        if parts is None:
            if ref:
                log.warning("Lesson %s has a malformed storage ref %r", lesson_key, ref)
            return ""
        return self.store.public_url(*parts)

    def fetch(self) -> list[LessonResource]:
        rows = self.relational.query(Lesson, order_by=(Lesson.position, Lesson.key))
        out = []
        for row in rows:
            audio_url = self._url(row.key, row.audio_ref)
            pdf_url = self._url(row.key, row.pdf_ref)
            if audio_url or pdf_url:
                out.append(LessonResource(key=row.key, audio_url=audio_url, pdf_url=pdf_url, title=row.title))
        return out


def load_lessons(source: LessonSource) -> LessonListing:
    try:
        resources = source.fetch()
    except Exception as e:
        log.error("Loading lessons from %s failed: %s", type(source).__name__, e)
        return LessonListing(resources=[], error=str(e) or type(e).__name__)
    log.info("Loaded %d lessons from %s", len(resources), type(source).__name__)
    return LessonListing(resources=resources)
