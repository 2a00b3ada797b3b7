"""Filtering and canonicalization helpers for answer maps.

An answer map is never persisted with blank entries. `filter_answers` is the
single place that decides what "blank" means, and `answers_fingerprint`
produces the stable string the autosave scheduler compares against its last
confirmed snapshot.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping
import json

from draftsync.logic.errors import ValidationFailed


AnswerValue = Any
Answers = Dict[str, AnswerValue]


def is_blank(value: Any) -> bool:
    """Return True for values that carry no answer.

    - None
    - empty string
    - empty list (a multiselect with nothing chosen)
    """
    if value is None:
        return True
    if isinstance(value, str) and value == "":
        return True
    if isinstance(value, list) and not value:
        return True
    return False


def _check_value(question_id: str, value: Any) -> None:
    # bool is an int subclass; answers never carry booleans
    if isinstance(value, bool):
        raise ValidationFailed(f"answer for {question_id!r} must be a string, number or list of strings")
    if isinstance(value, (str, int, float)):
        return
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return
    raise ValidationFailed(f"answer for {question_id!r} must be a string, number or list of strings")


def filter_answers(answers: Mapping[str, Any] | None) -> Answers:
    """Return a new map holding only the non-blank entries of `answers`.

    Re-filtering an already filtered map returns an equal map.
    """
    if answers is None:
        return {}
    if not isinstance(answers, Mapping):
        raise ValidationFailed("answers must be an object")
    filtered: Answers = {}
    for question_id, value in answers.items():
        if is_blank(value):
            continue
        _check_value(str(question_id), value)
        filtered[str(question_id)] = list(value) if isinstance(value, list) else value
    return filtered


def answers_fingerprint(answers: Mapping[str, Any] | None) -> str:
    """Canonical JSON of the filtered answers (sorted keys, compact)."""
    return json.dumps(filter_answers(answers), sort_keys=True, separators=(",", ":"))


__all__ = ["Answers", "is_blank", "filter_answers", "answers_fingerprint"]
