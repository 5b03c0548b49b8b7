"""
Pydantic schemas for the quiz generation pipeline.

RawQuestion   → one question as emitted by the model (untrusted, lenient)
FinalQuestion → one question ready for the question table
"""

from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


# ─── Model output ─────────────────────────────────────────────────────────────

class RawQuestion(BaseModel):
    """
    Question parsed from the model payload.

    Payload keys are "Question", "answers" and "correct_answer". Nothing is
    validated here: answers may be missing, short, long or not a list, and
    correct_index may be out of range or not an int. The normalizer decides
    what is well-formed.
    """
    model_config = ConfigDict(populate_by_name=True)

    text: Any = Field(None, alias="Question")
    answers: Any = None
    correct_index: Any = Field(None, alias="correct_answer")


# ─── Persisted output ─────────────────────────────────────────────────────────

class FinalQuestion(BaseModel):
    """Normalized question bound to a quiz."""
    quiz_id: int
    text: Any = None
    answers: Any = None
    correct_index: Any = None
    degraded: bool = False   # True when answer rebalancing was skipped


# ─── Completion results ───────────────────────────────────────────────────────

class Usage(BaseModel):
    """Token usage reported by one completion call."""
    prompt_tokens: int = 0
    completion_tokens: int = 0


class CompletionResult(BaseModel):
    text: str
    usage: Optional[Usage] = None


# ─── Quiz records ─────────────────────────────────────────────────────────────

class QuizRef(BaseModel):
    """A quiz row as seen by the worker."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    filepath: Optional[str] = None
