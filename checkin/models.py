# checkin/models.py
# Tables this service reads and writes. `listens` is keyed by (cid, lesson_key);
# the unique constraint is what makes completion writes idempotent.

from __future__ import annotations
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

# Single global SQLAlchemy instance lives here.
db = SQLAlchemy()


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(256), unique=True, nullable=False)
    name = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_login_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.id} {self.email}>"


class Lesson(db.Model):
    __tablename__ = "lessons"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(255), unique=True, nullable=False)
    title = db.Column(db.String(255), nullable=True)
    # "<container>/<path inside container>", e.g. "lessons/2025-10/unit1.mp3"
    audio_ref = db.Column(db.String(512), nullable=True)
    pdf_ref = db.Column(db.String(512), nullable=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<Lesson {self.key}>"


class Listen(db.Model):
    __tablename__ = "listens"

    id = db.Column(db.Integer, primary_key=True)
    cid = db.Column(db.String(128), nullable=False, index=True)
    lesson_key = db.Column(db.String(255), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint("cid", "lesson_key", name="uq_listen_cid_lesson"),)

    def __repr__(self) -> str:
        return f"<Listen {self.cid} {self.lesson_key}>"
