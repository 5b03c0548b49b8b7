"""
SQLAlchemy models for quizzes and their generated questions.

Column names follow the existing tables (quizz.filepath, question.quizzid,
question."Question"); attribute names are the Python-side spelling.
"""

from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database.database import Base


class Quiz(Base):
    """
    A quiz waiting for questions.
    filepath is the object key of the source PDF inside the storage bucket.
    """
    __tablename__ = "quizz"

    id = Column(Integer, primary_key=True, index=True)
    filepath = Column(String(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)

    questions = relationship("Question", back_populates="quiz", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Quiz(id={self.id}, filepath='{self.filepath}')>"


class Question(Base):
    """One generated multiple-choice question. answers is a JSON list of 4 strings."""
    __tablename__ = "question"

    id = Column(Integer, primary_key=True, index=True)
    quiz_id = Column("quizzid", Integer, ForeignKey("quizz.id", ondelete="CASCADE"), nullable=False, index=True)
    question_text = Column("Question", Text, nullable=True)
    answers = Column(JSON, nullable=True)
    correct_answer = Column(Integer, nullable=True)  # 0-based index into answers
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)

    quiz = relationship("Quiz", back_populates="questions")

    def __repr__(self):
        return f"<Question(id={self.id}, quiz_id={self.quiz_id}, correct_answer={self.correct_answer})>"
