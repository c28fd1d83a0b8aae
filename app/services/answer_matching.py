"""
Objective answer comparison
"""
import json
from typing import Any, Optional


def normalize_correct_answer(correct_answer: Any) -> str:
    """Stored correct answers are raw strings or JSON-serializable values"""
    if correct_answer is None:
        return ""
    if isinstance(correct_answer, str):
        return correct_answer.strip()
    return json.dumps(correct_answer)


def is_answer_correct(user_answer: Optional[str], correct_answer: Any) -> bool:
    """
    Exact-match comparison of a user answer against the stored correct answer

    Falls back to structural comparison when both sides parse as JSON, so
    '["a", "b"]' and '["a","b"]' are equal.
    """
    correct = normalize_correct_answer(correct_answer)
    user = str(user_answer if user_answer is not None else "").strip()

    if correct == user:
        return True

    try:
        correct_obj = json.loads(correct) if isinstance(correct_answer, str) else correct_answer
        user_obj = json.loads(user)
    except (ValueError, TypeError):
        return False

    return correct_obj == user_obj
