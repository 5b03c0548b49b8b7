import random
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from generation.errors import NotFoundError, RenderError, WriteError
from generation.schemas import CompletionResult, QuizRef, Usage


def question_payload(question: str = "What is 2 + 2?", correct: int = 0) -> dict:
    answers = ["4", "3", "5", "22"]
    answers[0], answers[correct] = answers[correct], answers[0]
    return {"Question": question, "answers": answers, "correct_answer": correct}


class FakeBlobStore:
    """In-memory object store keyed by path."""

    def __init__(self, objects: Optional[Dict[str, bytes]] = None):
        self.objects = objects or {}
        self.downloads: List[str] = []

    async def download(self, path: str) -> bytes:
        self.downloads.append(path)
        if path not in self.objects:
            raise NotFoundError(f"Object '{path}' not found")
        return self.objects[path]


class FakeRenderer:
    """Writes a placeholder file per page; fails the first `fail_first` renders."""

    def __init__(self, page_count: int = 20, fail_first: int = 0, as_directories: bool = False):
        self.page_count = page_count
        self.fail_first = fail_first
        self.as_directories = as_directories
        self.rendered: List[Path] = []
        self.calls = 0

    def count_pages(self, document_path) -> int:
        assert Path(document_path).exists()
        return self.page_count

    def render_page(self, document_path, page_number, output_dir, basename="page") -> Path:
        self.calls += 1
        if self.calls <= self.fail_first:
            raise RenderError(f"cannot render page {page_number}")
        path = Path(output_dir) / f"{basename}.{page_number}.{self.calls}.png"
        if self.as_directories:
            path.mkdir()
        else:
            path.write_bytes(b"\x89PNG fake")
        self.rendered.append(path)
        return path


class FakeCompletion:
    """Returns queued responses in order; an Exception entry is raised instead."""

    def __init__(self, responses, usage: Optional[Usage] = Usage(prompt_tokens=100, completion_tokens=50)):
        self.responses = list(responses)
        self.usage = usage
        self.calls: List[dict] = []

    async def generate(self, images, system_instructions, user_instructions) -> CompletionResult:
        self.calls.append({
            "images": list(images),
            "system": system_instructions,
            "user": user_instructions,
        })
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return CompletionResult(text=response, usage=self.usage)


class FakeStore:
    def __init__(self, quizzes: List[QuizRef], fail_for: Optional[set] = None):
        self.quizzes = quizzes
        self.fail_for = fail_for or set()
        self.inserted: List = []
        self.insert_calls = 0

    def list_quizzes(self, quiz_id=None) -> List[QuizRef]:
        if quiz_id is None:
            return list(self.quizzes)
        return [q for q in self.quizzes if q.id == quiz_id]

    def insert_questions(self, records) -> int:
        self.insert_calls += 1
        if records and records[0].quiz_id in self.fail_for:
            raise WriteError("insert failed")
        self.inserted.extend(records)
        return len(records)


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source for reproducible sampling and shuffling."""
    return random.Random(1234)


@pytest.fixture
def sample_pdf(tmp_path: Path) -> Path:
    """Create a small PDF with numbered pages."""
    import fitz

    pdf_path = tmp_path / "sample.pdf"
    doc = fitz.open()
    for i in range(1, 6):
        page = doc.new_page(width=595, height=842)
        page.insert_text((72, 72), f"Page {i}: photosynthesis converts light into chemical energy.")
    doc.save(str(pdf_path))
    doc.close()
    return pdf_path
