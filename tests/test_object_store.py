from __future__ import annotations

import pytest

from checkin.object_store import DEFAULT_CACHE_CONTROL, ObjectStoreError, R2ObjectStore


class _FakePaginator:
    def __init__(self, pages) -> None:
        self.pages = pages
        self.kwargs = None

    def paginate(self, **kwargs):
        self.kwargs = kwargs
        return iter(self.pages)


class _FakeS3Client:
    def __init__(self, pages=()) -> None:
        self.paginator = _FakePaginator(list(pages))
        self.put_calls = []

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return self.paginator

    def put_object(self, **kwargs):
        self.put_calls.append(kwargs)
        return {"ETag": '"abc"'}


def test_list_strips_prefix_and_skips_folder_marker() -> None:
    client = _FakeS3Client([
        {"Contents": [{"Key": "2025-10/"}, {"Key": "2025-10/a.mp3"}]},
        {"Contents": [{"Key": "2025-10/a.pdf"}]},
        {},
    ])
    store = R2ObjectStore(client=client, public_base="https://cdn.test")

    names = store.list("lessons", "2025-10/", limit=50)

    assert names == ["a.mp3", "a.pdf"]
    assert client.paginator.kwargs == {
        "Bucket": "lessons",
        "Prefix": "2025-10/",
        "Delimiter": "/",
        "PaginationConfig": {"MaxItems": 50},
    }


def test_upload_sets_content_type_and_cache_control() -> None:
    client = _FakeS3Client()
    store = R2ObjectStore(client=client)

    store.upload("recordings", "anon_x/unit1/1-ab.m4a", b"data", "audio/mp4")

    assert client.put_calls == [{
        "Bucket": "recordings",
        "Key": "anon_x/unit1/1-ab.m4a",
        "Body": b"data",
        "ContentType": "audio/mp4",
        "CacheControl": DEFAULT_CACHE_CONTROL,
    }]


def test_public_url_quotes_path() -> None:
    store = R2ObjectStore(client=_FakeS3Client(), public_base="https://cdn.test/")

    assert store.public_url("lessons", "/Unit 1.mp3") == "https://cdn.test/lessons/Unit%201.mp3"


def test_unconfigured_store_raises() -> None:
    store = R2ObjectStore.from_config({})

    assert not store.enabled
    with pytest.raises(ObjectStoreError):
        store.list("lessons")
    with pytest.raises(ObjectStoreError):
        store.upload("recordings", "a", b"", "audio/mp4")
    with pytest.raises(ObjectStoreError):
        store.public_url("lessons", "a.mp3")
