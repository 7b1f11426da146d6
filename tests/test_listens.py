from __future__ import annotations

from sqlalchemy.exc import OperationalError

from checkin.identity import ClientIdentity
from checkin.listens import CompletionTracker, local_flag_key
from checkin.models import Listen, db
from checkin.store import RelationalStore


class _FailingStore(RelationalStore):
    def count(self, model, **filters):
        raise OperationalError("SELECT", {}, Exception("connection lost"))

    def upsert(self, model, rows, conflict_target):
        raise OperationalError("INSERT", {}, Exception("connection lost"))


def test_mark_completed_twice_keeps_one_record(app) -> None:
    tracker = CompletionTracker(RelationalStore())
    ident = ClientIdentity.anonymous("anon_abc12345")

    assert tracker.mark_completed("unit1", ident)
    assert tracker.mark_completed("unit1", ident)

    assert Listen.query.filter_by(cid="anon_abc12345", lesson_key="unit1").count() == 1
    assert tracker.has_completed("unit1", ident)


def test_completion_is_scoped_to_identity_and_lesson(app) -> None:
    tracker = CompletionTracker(RelationalStore())
    me = ClientIdentity.anonymous("anon_me")
    other = ClientIdentity.anonymous("anon_other")

    tracker.mark_completed("unit1", me)

    assert not tracker.has_completed("unit1", other)
    assert not tracker.has_completed("unit2", me)
    assert Listen.query.count() == 1


def test_user_and_device_identities_share_the_same_path(app) -> None:
    tracker = CompletionTracker(RelationalStore())

    tracker.mark_completed("unit1", ClientIdentity.for_user(7))

    row = Listen.query.one()
    assert row.cid == "7"


def test_local_flag_flips_before_remote_write_and_survives_failure(app) -> None:
    local: dict = {}
    tracker = CompletionTracker(_FailingStore(), local=local)
    ident = ClientIdentity.anonymous("anon_x")

    assert tracker.mark_completed("unit1", ident) is True

    assert local[local_flag_key("unit1", ident)] == "1"
    assert tracker.is_listened("unit1", ident)


def test_read_failure_reports_not_completed(app) -> None:
    tracker = CompletionTracker(_FailingStore())

    assert tracker.has_completed("unit1", ClientIdentity.anonymous("anon_x")) is False


def test_is_listened_falls_back_to_remote_record(app) -> None:
    ident = ClientIdentity.anonymous("anon_remote")
    db.session.add(Listen(cid="anon_remote", lesson_key="unit9"))
    db.session.commit()

    tracker = CompletionTracker(RelationalStore(), local={})

    assert tracker.is_listened("unit9", ident)
    assert not tracker.is_marked_locally("unit9", ident)


def test_local_flag_does_not_carry_over_to_another_identity(app) -> None:
    local: dict = {}
    tracker = CompletionTracker(RelationalStore(), local=local)
    device = ClientIdentity.anonymous("anon_shared")
    user = ClientIdentity.for_user(7)

    tracker.mark_completed("unit1", device)

    assert tracker.is_listened("unit1", device)
    assert not tracker.is_marked_locally("unit1", user)
    assert not tracker.is_listened("unit1", user)
