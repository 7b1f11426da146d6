#!/usr/bin/env python3
# sync_lessons.py: run from repo root, e.g. `python sync_lessons.py --prefix 2025-10/`
#
# Copies the lessons bucket listing into the `lessons` table so the page can
# run with LESSON_SOURCE=rows (titles and ordering then live in the database).

import argparse

from checkin import create_app
from checkin.lessons import pair_media
from checkin.models import Lesson, db
from checkin.store import RelationalStore, safe_commit


def build_rows(names, container: str, prefix: str = "") -> list[dict]:
    rows = []
    for key, entry in pair_media(names).items():
        if not entry:
            continue
        rows.append({
            "key": key,
            "title": key,
            "audio_ref": f"{container}/{prefix}{entry['audio']}" if entry.get("audio") else None,
            "pdf_ref": f"{container}/{prefix}{entry['pdf']}" if entry.get("pdf") else None,
        })
    rows.sort(key=lambda r: r["key"])
    for i, row in enumerate(rows):
        row["position"] = i
    return rows


def sync(store, container: str, prefix: str, *, update: bool = False) -> tuple[int, int]:
    """Returns (new_rows, updated_rows)."""
    rows = build_rows(store.list(container, prefix), container, prefix)
    relational = RelationalStore()
    added = relational.upsert(Lesson, rows, conflict_target=("key",))

    updated = 0
    if update:
        by_key = {r["key"]: r for r in rows}
        for lesson in relational.query(Lesson):
            row = by_key.get(lesson.key)
            if row and (lesson.audio_ref, lesson.pdf_ref) != (row["audio_ref"], row["pdf_ref"]):
                lesson.audio_ref = row["audio_ref"]
                lesson.pdf_ref = row["pdf_ref"]
                updated += 1
        safe_commit()
    return added, updated


def main():
    parser = argparse.ArgumentParser(description="Seed the lessons table from the lessons bucket.")
    parser.add_argument("--bucket", help="bucket to list (default: LESSONS_BUCKET)")
    parser.add_argument("--prefix", help="folder inside the bucket (default: LIST_PREFIX)")
    parser.add_argument("--update", action="store_true", help="refresh refs of lessons that already exist")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        db.create_all()
        container = args.bucket or app.config["LESSONS_BUCKET"]
        prefix = args.prefix if args.prefix is not None else (app.config.get("LIST_PREFIX") or "")
        store = app.extensions["checkin.object_store"]
        added, updated = sync(store, container, prefix, update=args.update)

    print(f"✅ {container}/{prefix}: {added} new lessons, {updated} updated.")


if __name__ == "__main__":
    main()
