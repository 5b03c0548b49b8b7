"""
Persistence layer for the quiz worker.

quizz    → quizzes waiting for questions (one stored PDF each)
question → generated multiple-choice questions, one row per question
"""
