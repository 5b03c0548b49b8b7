"""
Answer Balancer

Models tend to put the correct answer in the same slot. Before questions are
stored the correct-answer positions are re-drawn so that, over one quiz, every
slot is used as equally as integer division allows:

  1. plan_correct_positions  - balanced positions [0,1,2,3,0,1,...], shuffled
  2. normalize_question      - move the correct answer to its planned slot and
                               shuffle the three distractors into the others

Answer texts are only reordered, never edited. Malformed questions are passed
through untouched and flagged as degraded.
"""

import logging
import random
from typing import List, Optional

from generation.schemas import FinalQuestion, RawQuestion

log = logging.getLogger("generation.pipeline")

OPTION_COUNT = 4


def plan_correct_positions(n: int, rng: Optional[random.Random] = None) -> List[int]:
    """
    Target correct-answer position for each of n questions.

    Index i of the base sequence is i % 4, which gives each position
    floor(n/4) or ceil(n/4) times; one shuffle removes any link between
    generation order and position.
    """
    if n < 0:
        raise ValueError(f"n must be >= 0, got {n}")
    rng = rng if rng is not None else random
    positions = [i % OPTION_COUNT for i in range(n)]
    rng.shuffle(positions)
    return positions


def answer_index(value) -> Optional[int]:
    """int value of a JSON number that is a whole number (1 or 1.0); None otherwise."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def is_well_formed(raw: RawQuestion) -> bool:
    """Exactly 4 non-empty string answers and a whole-number correct_index pointing at one of them."""
    answers = raw.answers
    if not isinstance(answers, list) or len(answers) != OPTION_COUNT:
        return False
    if not all(isinstance(a, str) and a for a in answers):
        return False
    idx = answer_index(raw.correct_index)
    return idx is not None and 0 <= idx < len(answers)


def normalize_question(
    raw: RawQuestion,
    target: int,
    quiz_id: int,
    rng: Optional[random.Random] = None,
) -> FinalQuestion:
    """
    Place the correct answer at `target` and shuffle the distractors around it.

    Never raises on malformed model output: such questions keep their answers
    and correct_index as given and come back with degraded=True.
    """
    if not 0 <= target < OPTION_COUNT:
        raise ValueError(f"target must be in [0, {OPTION_COUNT - 1}], got {target}")

    if not is_well_formed(raw):
        log.warning(
            "Quiz %s: malformed question kept as-is (answers=%r, correct_answer=%r)",
            quiz_id, raw.answers, raw.correct_index,
        )
        return FinalQuestion(
            quiz_id=quiz_id,
            text=raw.text,
            answers=raw.answers,
            correct_index=raw.correct_index,
            degraded=True,
        )

    rng = rng if rng is not None else random
    correct = answer_index(raw.correct_index)
    correct_text = raw.answers[correct]
    incorrect = raw.answers[:correct] + raw.answers[correct + 1:]
    rng.shuffle(incorrect)

    distractors = iter(incorrect)
    answers = [
        correct_text if slot == target else next(distractors)
        for slot in range(OPTION_COUNT)
    ]
    return FinalQuestion(
        quiz_id=quiz_id,
        text=raw.text,
        answers=answers,
        correct_index=target,
    )


def normalize_questions(
    raw_questions: List[RawQuestion],
    quiz_id: int,
    rng: Optional[random.Random] = None,
) -> List[FinalQuestion]:
    """Plan positions for the whole quiz, then normalize each question against its slot."""
    plan = plan_correct_positions(len(raw_questions), rng=rng)
    return [
        normalize_question(raw, target, quiz_id, rng=rng)
        for raw, target in zip(raw_questions, plan)
    ]
