"""
Question Generation: prompts and response parsing

Builds the instructions sent with each page cluster and turns the model reply
into RawQuestion objects. The reply is untrusted text: it may be wrapped in a
code fence, may not be JSON, or may not be an array.
"""

import json
import logging
import re
from typing import List

from generation.errors import GenerationParseError
from generation.schemas import RawQuestion

log = logging.getLogger("generation.pipeline")


# ─── Prompts ───────────────────────────────────────────────────────────────────

SYSTEM_PROMPT = """You are a helpful assistant that generates multiple-choice questions from document pages. For students to prepare for their quizzes. Do not reference to any particular image, understand the pages and ask questions based on the content of the pages.
You MUST output your response strictly as a JSON array of {question_count} objects, with NO markdown formatting, NO ```json block, just the raw JSON array.
Each object must have the exact following structure:
{{
  "Question": "The text of the question",
  "answers": [
    "Option 1",
    "Option 2",
    "Option 3",
    "Option 4"
  ],
  "correct_answer": 0
}}
CRITICAL INSTRUCTION: The 'correct_answer' field should contain only the integer index of the correct option (0, 1, 2, or 3)."""

USER_PROMPT = (
    "Here are {page_count} consecutive pages from a document. "
    "Create {question_count} multiple-choice questions based on the content of these pages."
)


def build_system_prompt(question_count: int = 2) -> str:
    return SYSTEM_PROMPT.format(question_count=question_count)


def build_user_prompt(page_count: int, question_count: int = 2) -> str:
    return USER_PROMPT.format(page_count=page_count, question_count=question_count)


# ─── JSON extraction ───────────────────────────────────────────────────────────

_FENCE_OPEN = re.compile(r"^```(?:json)?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"```$")


def strip_code_fences(raw: str) -> str:
    """Remove a leading ```json / ``` marker and a trailing ``` marker."""
    text = raw.strip()
    if _FENCE_OPEN.match(text):
        text = _FENCE_OPEN.sub("", text, count=1)
        text = _FENCE_CLOSE.sub("", text.rstrip(), count=1)
    return text.strip()


def parse_questions(raw: str) -> List[RawQuestion]:
    """
    Parse a model reply into RawQuestion objects.

    Entries that are not JSON objects are dropped; object fields are not
    validated (see answer_balancer.is_well_formed).

    Raises:
        GenerationParseError: reply is not valid JSON or not a JSON array
    """
    text = strip_code_fences(raw or "")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise GenerationParseError(f"Invalid JSON: {e}", raw=text) from e

    if not isinstance(data, list):
        raise GenerationParseError(
            f"Expected a JSON array, got {type(data).__name__}", raw=text
        )

    questions = []
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            log.warning("Dropping question %s: expected an object, got %s", i, type(item).__name__)
            continue
        questions.append(RawQuestion.model_validate(item))
    return questions
