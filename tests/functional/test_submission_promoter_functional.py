"""Functional tests for final-submission promotion.

Scope covered here:
- A promoted scope has no live draft and exactly one new submitted row
- Collaborative submissions get fresh respondent ids; session ones keep theirs
- A failed insert rolls back the draft delete
- Idempotency keys make resubmission a conflict instead of a duplicate
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import InternalError

from draftsync.db import build_engine
from draftsync.logic import repository_responses as repo
from draftsync.logic.draft_resolver import DraftUpsertResolver
from draftsync.logic.errors import (
    AlreadySubmitted,
    NothingToSave,
    StoreUnavailable,
    SubmissionFailed,
)
from draftsync.logic.events import RESPONSE_SUBMITTED, get_buffered_events
from draftsync.logic.scope import CollaborativeScope, SessionScope
from draftsync.logic.submission_promoter import SubmissionPromoter, final_respondent_id


def _submissions(engine, questionnaire_id: str) -> list:
    with engine.connect() as conn:
        return repo.list_submissions(conn, questionnaire_id)


def test_promote_retires_draft_and_inserts_submitted_row(engine):
    resolver = DraftUpsertResolver(engine)
    promoter = SubmissionPromoter(engine)
    scope = CollaborativeScope("Q1")
    resolver.save(scope, {"q1": "A"})

    record = promoter.promote(scope, {"q1": "A", "q2": "B"})

    assert record["status"] == "submitted"
    assert record["answers"] == {"q1": "A", "q2": "B"}
    assert record["respondent_id"].startswith("submitted_")
    assert record["submitted_at"] is not None
    assert resolver.load(scope) is None
    rows = _submissions(engine, "Q1")
    assert [r["id"] for r in rows] == [record["id"]]
    assert rows[0]["answers"] == {"q1": "A", "q2": "B"}


def test_promote_without_prior_draft(engine):
    promoter = SubmissionPromoter(engine)

    record = promoter.promote(CollaborativeScope("Q1"), {"q1": "A"})

    assert _submissions(engine, "Q1")[0]["id"] == record["id"]


def test_promote_filters_blank_answers(engine):
    record = SubmissionPromoter(engine).promote(CollaborativeScope("Q1"), {"q1": "A", "q2": ""})

    assert record["answers"] == {"q1": "A"}


def test_promote_with_only_blank_answers_is_rejected_and_draft_kept(engine):
    resolver = DraftUpsertResolver(engine)
    scope = CollaborativeScope("Q1")
    resolver.save(scope, {"q1": "A"})

    with pytest.raises(NothingToSave) as excinfo:
        SubmissionPromoter(engine).promote(scope, {"q1": "", "q2": None})

    assert "at least one question" in excinfo.value.message
    assert resolver.load(scope)["answers"] == {"q1": "A"}
    assert _submissions(engine, "Q1") == []


def test_collaborative_submissions_never_collide(engine):
    promoter = SubmissionPromoter(engine)
    scope = CollaborativeScope("Q1")

    first = promoter.promote(scope, {"q1": "A"})
    second = promoter.promote(scope, {"q1": "B"})

    assert first["respondent_id"] != second["respondent_id"]
    assert len(_submissions(engine, "Q1")) == 2


def test_session_submission_keeps_respondent_id(engine):
    scope = SessionScope("Q1", "S1")

    record = SubmissionPromoter(engine).promote(scope, {"q1": "A"})

    assert record["respondent_id"] == "S1"
    assert final_respondent_id(scope) == "S1"


def test_session_scope_can_start_new_draft_after_submit(engine):
    resolver = DraftUpsertResolver(engine)
    scope = SessionScope("Q1", "S1")
    resolver.save(scope, {"q1": "A"})
    SubmissionPromoter(engine).promote(scope, {"q1": "A"})

    # Submitted rows sit outside the live-draft index
    again = resolver.save(scope, {"q1": "B"})

    assert again.created is True


def test_promote_only_retires_its_own_scope(engine):
    resolver = DraftUpsertResolver(engine)
    resolver.save(SessionScope("Q1", "S1"), {"q1": "mine"})
    resolver.save(SessionScope("Q1", "S2"), {"q1": "theirs"})
    resolver.save(CollaborativeScope("Q1"), {"q1": "shared"})

    SubmissionPromoter(engine).promote(SessionScope("Q1", "S1"), {"q1": "mine"})

    assert resolver.load(SessionScope("Q1", "S1")) is None
    assert resolver.load(SessionScope("Q1", "S2")) is not None
    assert resolver.load(CollaborativeScope("Q1")) is not None


def test_failed_insert_keeps_the_draft(engine, monkeypatch):
    resolver = DraftUpsertResolver(engine)
    scope = CollaborativeScope("Q1")
    resolver.save(scope, {"q1": "keep me"})

    def failing_insert(*args, **kwargs):
        raise InternalError("INSERT INTO responses", {}, Exception("disk full"))

    monkeypatch.setattr(repo, "insert_submission", failing_insert)

    with pytest.raises(SubmissionFailed):
        SubmissionPromoter(engine).promote(scope, {"q1": "keep me"})

    assert resolver.load(scope)["answers"] == {"q1": "keep me"}
    assert _submissions(engine, "Q1") == []
    assert get_buffered_events(clear=True)[-1]["type"] != RESPONSE_SUBMITTED


def test_unreachable_store_is_retryable(tmp_path):
    broken = build_engine(f"sqlite:///{tmp_path / 'missing' / 'nope.db'}")

    with pytest.raises(StoreUnavailable):
        SubmissionPromoter(broken).promote(CollaborativeScope("Q1"), {"q1": "A"})
    broken.dispose()


def test_resubmission_with_same_key_is_rejected(engine):
    promoter = SubmissionPromoter(engine)
    scope = CollaborativeScope("Q1")

    first = promoter.promote(scope, {"q1": "A"}, idempotency_key="key-1")
    with pytest.raises(AlreadySubmitted) as excinfo:
        promoter.promote(scope, {"q1": "A"}, idempotency_key="key-1")

    assert excinfo.value.status == 409
    assert excinfo.value.response_id == first["id"]
    assert len(_submissions(engine, "Q1")) == 1


def test_rejected_resubmission_leaves_new_draft_alone(engine):
    resolver = DraftUpsertResolver(engine)
    promoter = SubmissionPromoter(engine)
    scope = SessionScope("Q1", "S1")
    promoter.promote(scope, {"q1": "A"}, idempotency_key="key-1")
    resolver.save(scope, {"q1": "new draft"})

    with pytest.raises(AlreadySubmitted):
        promoter.promote(scope, {"q1": "A"}, idempotency_key="key-1")

    assert resolver.load(scope)["answers"] == {"q1": "new draft"}


def test_distinct_keys_produce_distinct_submissions(engine):
    promoter = SubmissionPromoter(engine)
    scope = CollaborativeScope("Q1")

    promoter.promote(scope, {"q1": "A"}, idempotency_key="key-1")
    promoter.promote(scope, {"q1": "A"}, idempotency_key="key-2")
    promoter.promote(scope, {"q1": "A"}, idempotency_key="  ")

    assert len(_submissions(engine, "Q1")) == 3


def test_list_submitted_is_newest_first(engine):
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    ticks = iter(start + timedelta(minutes=n) for n in range(3))
    promoter = SubmissionPromoter(engine, clock=lambda: next(ticks))
    scope = CollaborativeScope("Q1")
    ids = [promoter.promote(scope, {"q1": str(n)})["id"] for n in range(3)]
    SubmissionPromoter(engine).promote(CollaborativeScope("Q2"), {"q1": "other"})

    listed = promoter.list_submitted("Q1")

    assert [r["id"] for r in listed] == list(reversed(ids))
    assert all(r["questionnaire_id"] == "Q1" for r in listed)


def test_promote_publishes_submitted_event(engine):
    record = SubmissionPromoter(engine).promote(CollaborativeScope("Q1"), {"q1": "A"})

    events = get_buffered_events()
    assert events[-1]["type"] == RESPONSE_SUBMITTED
    assert events[-1]["payload"]["response_id"] == record["id"]
