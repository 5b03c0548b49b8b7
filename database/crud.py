"""
CRUD operations for quizzes and questions
All database access from the worker goes through QuizStore
"""

from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import models
from database.database import SessionLocal
from generation.answer_balancer import answer_index
from generation.errors import WriteError
from generation.schemas import FinalQuestion, QuizRef


def _coerce_index(value) -> Optional[int]:
    """correct_answer column is an integer; degraded rows may carry anything."""
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return answer_index(value)


def question_to_row(question: FinalQuestion) -> models.Question:
    """Map a FinalQuestion onto a question row (the degraded flag is not stored)."""
    return models.Question(
        quiz_id=question.quiz_id,
        question_text=question.text if isinstance(question.text, str) else None,
        answers=question.answers,
        correct_answer=_coerce_index(question.correct_index),
    )


class QuizStore:
    """
    Relational store for quiz and question records.

    Each call opens its own session so a failed write never leaves a broken
    session behind for the next quiz.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def list_quizzes(self, quiz_id: Optional[int] = None) -> List[QuizRef]:
        """Get all quizzes (or a single one) ordered by id."""
        db = self.session_factory()
        try:
            query = db.query(models.Quiz)
            if quiz_id is not None:
                query = query.filter(models.Quiz.id == quiz_id)
            return [QuizRef.model_validate(q) for q in query.order_by(models.Quiz.id).all()]
        finally:
            db.close()

    def insert_questions(self, records: List[FinalQuestion]) -> int:
        """
        Insert all questions of one quiz in a single transaction.

        Returns:
            Number of rows written

        Raises:
            WriteError: the batch was rolled back
        """
        if not records:
            return 0
        db = self.session_factory()
        try:
            db.add_all([question_to_row(r) for r in records])
            db.commit()
            return len(records)
        except SQLAlchemyError as e:
            db.rollback()
            raise WriteError(f"Failed to insert {len(records)} questions: {e}") from e
        finally:
            db.close()
