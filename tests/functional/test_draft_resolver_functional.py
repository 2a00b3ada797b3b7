"""Functional tests for the draft upsert resolver.

Scope covered here:
- The three save branches: updated, inserted, race lost
- At most one live draft per scope under concurrent autosaves
- Session and collaborative scopes never share a row
- Store failures surface as retryable errors, constraint failures as permanent ones
- Empty payloads touch nothing
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from draftsync.db import apply_migrations, build_engine
from draftsync.logic import repository_responses as repo
from draftsync.logic.draft_resolver import DraftUpsertResolver, SaveOutcome
from draftsync.logic.errors import DraftRejected, NothingToSave, StoreUnavailable, ValidationFailed
from draftsync.logic.events import DRAFT_SAVED, get_buffered_events
from draftsync.logic.scope import CollaborativeScope, SessionScope


def _live_count(engine, scope) -> int:
    with engine.connect() as conn:
        return repo.count_live_drafts(conn, scope)


def test_first_save_inserts_then_updates(engine):
    resolver = DraftUpsertResolver(engine)
    scope = CollaborativeScope("Q1")

    first = resolver.save(scope, {"q1": "A"})
    second = resolver.save(scope, {"q1": "A", "q2": "B"})

    assert first.outcome is SaveOutcome.INSERTED
    assert first.created is True
    assert second.outcome is SaveOutcome.UPDATED
    assert second.response_id == first.response_id
    assert resolver.load(scope)["answers"] == {"q1": "A", "q2": "B"}
    assert _live_count(engine, scope) == 1


def test_update_overwrites_answers_rather_than_merging(engine):
    resolver = DraftUpsertResolver(engine)
    scope = SessionScope("Q1", "S1")

    resolver.save(scope, {"q1": "A", "q2": "B"})
    resolver.save(scope, {"q1": "C"})

    assert resolver.load(scope)["answers"] == {"q1": "C"}


def test_blank_values_are_not_persisted(engine):
    resolver = DraftUpsertResolver(engine)
    scope = CollaborativeScope("Q1")

    resolver.save(scope, {"q1": "A", "q2": "", "q3": None, "q4": []})

    assert resolver.load(scope)["answers"] == {"q1": "A"}


def test_empty_payload_is_rejected_without_touching_the_store(engine):
    resolver = DraftUpsertResolver(engine)
    scope = CollaborativeScope("Q1")

    with pytest.raises(NothingToSave) as excinfo:
        resolver.save(scope, {"q1": "", "q2": None})

    assert excinfo.value.status == 400
    assert resolver.load(scope) is None
    assert get_buffered_events() == []


def test_malformed_answers_are_rejected(engine):
    resolver = DraftUpsertResolver(engine)

    with pytest.raises(ValidationFailed):
        resolver.save(CollaborativeScope("Q1"), {"q1": {"nested": True}})


def test_saved_at_comes_from_injected_clock(engine):
    fixed = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)
    resolver = DraftUpsertResolver(engine, clock=lambda: fixed)
    scope = CollaborativeScope("Q1")

    result = resolver.save(scope, {"q1": "A"})

    assert result.saved_at == "2024-05-01T12:30:00.000Z"
    assert resolver.load(scope)["last_saved_at"] == "2024-05-01T12:30:00.000Z"


def test_insert_conflict_is_reported_as_race_lost(engine, monkeypatch):
    resolver = DraftUpsertResolver(engine)
    scope = CollaborativeScope("Q1")
    real_insert = repo.insert_draft

    def update_while_rival_inserts(conn, scope_, answers, saved_at):
        # A rival writer creates the draft between our UPDATE and INSERT
        real_insert(conn, scope_, {"q1": "rival"}, saved_at)
        return 0

    monkeypatch.setattr(repo, "update_draft", update_while_rival_inserts)

    result = resolver.save(scope, {"q1": "mine"})

    assert result.outcome is SaveOutcome.RACE_LOST
    assert result.created is False
    draft = resolver.load(scope)
    assert result.response_id == draft["id"]
    # The winner's data stands; the loser re-sends on its next tick
    assert draft["answers"] == {"q1": "rival"}
    assert _live_count(engine, scope) == 1


def test_concurrent_first_saves_create_one_draft(engine):
    resolver = DraftUpsertResolver(engine)
    scope = CollaborativeScope("Q-concurrent")
    barrier = threading.Barrier(6)
    outcomes: list = []
    errors: list = []

    def worker(n: int) -> None:
        barrier.wait()
        try:
            outcomes.append(resolver.save(scope, {"q1": f"tab-{n}"}).outcome)
        except Exception as exc:  # pragma: no cover - surfaced by assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(outcomes) == 6
    assert outcomes.count(SaveOutcome.INSERTED) == 1
    assert _live_count(engine, scope) == 1


def test_concurrent_saves_on_default_in_memory_engine():
    mem = build_engine()
    apply_migrations(mem)
    resolver = DraftUpsertResolver(mem)
    scope = CollaborativeScope("Q-mem")
    barrier = threading.Barrier(8)
    errors: list = []

    def worker(n: int) -> None:
        barrier.wait()
        for i in range(20):
            try:
                resolver.save(scope, {"q1": f"tab-{n}-{i}"})
            except Exception as exc:  # pragma: no cover - surfaced by assertion below
                errors.append(exc)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert _live_count(mem, scope) == 1
    mem.dispose()


def test_session_and_collaborative_drafts_are_separate(engine):
    resolver = DraftUpsertResolver(engine)
    shared = CollaborativeScope("Q1")
    mine = SessionScope("Q1", "S1")
    theirs = SessionScope("Q1", "S2")

    resolver.save(shared, {"q1": "shared"})
    resolver.save(mine, {"q1": "mine"})
    resolver.save(theirs, {"q1": "theirs"})

    assert resolver.load(shared)["answers"] == {"q1": "shared"}
    assert resolver.load(mine)["answers"] == {"q1": "mine"}
    assert resolver.load(theirs)["answers"] == {"q1": "theirs"}
    assert resolver.load(SessionScope("Q2", "S1")) is None


def test_last_writer_wins_across_collaborators(engine):
    resolver = DraftUpsertResolver(engine)
    scope = CollaborativeScope("Q1")

    resolver.save(scope, {"q1": "A"})
    resolver.save(scope, {"q1": "B"})

    assert resolver.load(scope)["answers"] == {"q1": "B"}


def test_save_publishes_draft_saved_event(engine):
    resolver = DraftUpsertResolver(engine)

    result = resolver.save(SessionScope("Q1", "S1"), {"q1": "A"})

    events = get_buffered_events()
    assert [e["type"] for e in events] == [DRAFT_SAVED]
    assert events[0]["payload"]["response_id"] == result.response_id
    assert events[0]["payload"]["outcome"] == "inserted"
    assert events[0]["payload"]["respondent_id"] == "S1"


def test_unreachable_store_is_retryable(tmp_path):
    broken = build_engine(f"sqlite:///{tmp_path / 'missing' / 'nope.db'}")
    resolver = DraftUpsertResolver(broken)

    with pytest.raises(StoreUnavailable) as excinfo:
        resolver.save(CollaborativeScope("Q1"), {"q1": "A"})

    assert excinfo.value.retryable is True
    assert excinfo.value.status == 503
    with pytest.raises(StoreUnavailable):
        resolver.load(CollaborativeScope("Q1"))
    broken.dispose()


def test_non_unique_integrity_error_is_permanent(engine, monkeypatch):
    resolver = DraftUpsertResolver(engine)
    scope = CollaborativeScope("Q1")

    def failing_insert(conn, scope_, answers, saved_at):
        raise IntegrityError("INSERT INTO responses", {}, Exception("CHECK constraint failed: status"))

    monkeypatch.setattr(repo, "insert_draft", failing_insert)

    with pytest.raises(DraftRejected) as excinfo:
        resolver.save(scope, {"q1": "A"})

    assert excinfo.value.retryable is False
    assert excinfo.value.status == 422
    assert resolver.load(scope) is None
