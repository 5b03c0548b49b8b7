"""
Quiz Pipeline: generation/pipeline.py

Turns every quiz's stored PDF into a balanced set of multiple-choice questions.

Per quiz:
  fetching    → download the PDF into a private temp directory
  sampling    → pick a cluster of consecutive pages       ┐
  rendering   → rasterize each page of the cluster to PNG ├ once per cluster
  generating  → one vision call per cluster, parse JSON   ┘
  normalizing → balanced correct-answer plan + per-question reorder
  persisting  → one batch insert
  cleanup     → delete the PDF and every rendered image (always runs)

Quizzes are processed one at a time and clusters one at a time. A failure
only ever costs the cluster or quiz it happened in; nothing is retried.
"""

import asyncio
import enum
import logging
import os
import random
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import httpx
from openai import OpenAIError

from generation.answer_balancer import normalize_questions
from generation.errors import (
    BlobStoreError,
    CleanupError,
    FetchError,
    GenerationParseError,
    NoQuestionsError,
    QuizPipelineError,
    RenderError,
)
from generation.question_generator import build_system_prompt, build_user_prompt, parse_questions
from generation.schemas import CompletionResult, QuizRef, RawQuestion
from generation.usage_tracker import CostLedger, estimate_cost
from ingestion.page_sampler import PageCluster, sample_cluster

log = logging.getLogger("generation.pipeline")

# ── Pipeline config ────────────────────────────────────────────────────────────
CLUSTER_COUNT = int(os.getenv("QUIZ_CLUSTER_COUNT", "5"))
CLUSTER_SIZE = int(os.getenv("QUIZ_CLUSTER_SIZE", "3"))
QUESTIONS_PER_CLUSTER = int(os.getenv("QUIZ_QUESTIONS_PER_CLUSTER", "2"))


class QuizState(str, enum.Enum):
    FETCHING = "fetching"
    SAMPLING = "sampling"
    RENDERING = "rendering"
    GENERATING = "generating"
    NORMALIZING = "normalizing"
    PERSISTING = "persisting"
    CLEANUP = "cleanup"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PipelineConfig:
    cluster_count: int = CLUSTER_COUNT
    cluster_size: int = CLUSTER_SIZE
    questions_per_cluster: int = QUESTIONS_PER_CLUSTER
    dry_run: bool = False
    temp_root: Optional[str] = None   # parent of the per-quiz temp dirs; system temp when None


@dataclass(frozen=True)
class QuizOutcome:
    """Result of one quiz. ledger includes every completion call made for it."""
    quiz_id: int
    state: QuizState
    ledger: CostLedger
    failed_at: Optional[QuizState] = None
    reason: str = ""
    clusters: int = 0
    generated: int = 0
    inserted: int = 0
    degraded: int = 0
    cleanup_errors: int = 0


@dataclass(frozen=True)
class RunSummary:
    outcomes: List[QuizOutcome] = field(default_factory=list)
    ledger: CostLedger = field(default_factory=CostLedger)

    @property
    def succeeded(self) -> List[QuizOutcome]:
        return [o for o in self.outcomes if o.state == QuizState.DONE]

    @property
    def failed(self) -> List[QuizOutcome]:
        return [o for o in self.outcomes if o.state == QuizState.FAILED]


class QuizPipeline:
    """
    Orchestrates the collaborators for a batch of quizzes.

    Args:
        blob_store: async download(path) -> bytes
        renderer:   count_pages(pdf_path) and render_page(pdf_path, page, output_dir, basename) -> Path
        completion: async generate(images, system_instructions, user_instructions) -> CompletionResult
        store:      list_quizzes(quiz_id=None) and insert_questions(records) -> int
        config:     Cluster/question counts and dry-run switch
        rng:        Random source shared by sampling and answer balancing
    """

    def __init__(
        self,
        blob_store,
        renderer,
        completion,
        store,
        config: Optional[PipelineConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.blob_store = blob_store
        self.renderer = renderer
        self.completion = completion
        self.store = store
        self.config = config or PipelineConfig()
        self.rng = rng

    # ── Batch ─────────────────────────────────────────────────────────────────

    async def run(self, quiz_id: Optional[int] = None) -> RunSummary:
        """Process every quiz (or just quiz_id) sequentially and report the total cost."""
        log.info("Starting quiz worker...")
        quizzes = self.store.list_quizzes(quiz_id=quiz_id)
        if not quizzes:
            log.info("No quizzes found.")
            return RunSummary()

        log.info("Found %s quizzes. Processing...", len(quizzes))
        ledger = CostLedger()
        outcomes: List[QuizOutcome] = []
        for quiz in quizzes:
            outcome = await self.process_quiz(quiz, ledger)
            ledger = outcome.ledger
            outcomes.append(outcome)

        summary = RunSummary(outcomes=outcomes, ledger=ledger)
        log.info(
            "Finished processing quizzes: done=%s failed=%s skipped=%s",
            len(summary.succeeded), len(summary.failed),
            len(outcomes) - len(summary.succeeded) - len(summary.failed),
        )
        log.info("Usage: %s", ledger.summary())
        return summary

    # ── One quiz ──────────────────────────────────────────────────────────────

    async def process_quiz(self, quiz: QuizRef, ledger: CostLedger) -> QuizOutcome:
        log.info("--- Processing Quiz ID: %s ---", quiz.id)
        if not quiz.filepath:
            log.info("Quiz %s: no filepath, skipping", quiz.id)
            return QuizOutcome(quiz_id=quiz.id, state=QuizState.SKIPPED, ledger=ledger, reason="no filepath")

        state = QuizState.FETCHING
        workdir: Optional[Path] = None
        artifacts: List[Path] = []
        counts = {"clusters": 0, "generated": 0, "inserted": 0, "degraded": 0}
        failure: Optional[Tuple[QuizState, str]] = None

        try:
            workdir = Path(tempfile.mkdtemp(prefix=f"quiz_{quiz.id}_", dir=self.config.temp_root))
            document_path = await self._fetch(quiz, workdir)
            artifacts.append(document_path)
            page_count = await asyncio.to_thread(self.renderer.count_pages, document_path)
            log.info("Quiz %s: PDF has %s pages", quiz.id, page_count)
            if page_count < 1:
                raise FetchError(f"Document '{quiz.filepath}' has no pages")

            raw_questions: List[RawQuestion] = []
            used_pages: set = set()
            for index in range(1, self.config.cluster_count + 1):
                state = QuizState.SAMPLING
                cluster = sample_cluster(
                    page_count, used_pages, cluster_size=self.config.cluster_size, rng=self.rng
                )
                state = QuizState.RENDERING
                images = await self._render_cluster(quiz, index, cluster, document_path, workdir, artifacts)
                if images:
                    state = QuizState.GENERATING
                    questions, result = await self._generate_cluster(index, images)
                    if result is not None:
                        ledger = ledger.record(result.usage)
                    raw_questions.extend(questions)
                counts["clusters"] += 1

            counts["generated"] = len(raw_questions)
            if not raw_questions:
                raise NoQuestionsError(f"Quiz {quiz.id}: failed to generate any questions from the clusters")

            state = QuizState.NORMALIZING
            final = normalize_questions(raw_questions, quiz.id, rng=self.rng)
            counts["degraded"] = sum(1 for q in final if q.degraded)
            if counts["degraded"]:
                log.warning("Quiz %s: %s/%s questions kept without answer balancing",
                            quiz.id, counts["degraded"], len(final))

            state = QuizState.PERSISTING
            if self.config.dry_run:
                log.info("[DRY RUN] Quiz %s: would save %s questions", quiz.id, len(final))
            else:
                log.info("Quiz %s: saving %s generated questions...", quiz.id, len(final))
                counts["inserted"] = self.store.insert_questions(final)
                log.info("Quiz %s: successfully saved questions", quiz.id)
            state = QuizState.DONE
        except QuizPipelineError as e:
            log.error("Quiz %s failed during %s: %s", quiz.id, state.value, e)
            failure = (state, str(e))
        except Exception as e:
            log.exception("Quiz %s: unexpected error during %s", quiz.id, state.value)
            failure = (state, f"{type(e).__name__}: {e}")
        finally:
            cleanup_errors = self._cleanup(quiz, workdir, artifacts)

        if failure is not None:
            return QuizOutcome(
                quiz_id=quiz.id, state=QuizState.FAILED, ledger=ledger,
                failed_at=failure[0], reason=failure[1], cleanup_errors=len(cleanup_errors), **counts,
            )
        return QuizOutcome(
            quiz_id=quiz.id, state=QuizState.DONE, ledger=ledger,
            cleanup_errors=len(cleanup_errors), **counts,
        )

    async def _fetch(self, quiz: QuizRef, workdir: Path) -> Path:
        try:
            data = await self.blob_store.download(quiz.filepath)
        except BlobStoreError as e:
            raise FetchError(f"Error downloading PDF '{quiz.filepath}': {e}") from e
        document_path = workdir / f"{quiz.id}.pdf"
        document_path.write_bytes(data)
        log.info("Quiz %s: PDF saved locally at %s", quiz.id, document_path)
        return document_path

    # ── One cluster ───────────────────────────────────────────────────────────

    async def _render_cluster(
        self,
        quiz: QuizRef,
        index: int,
        cluster: PageCluster,
        document_path: Path,
        workdir: Path,
        artifacts: List[Path],
    ) -> List[Path]:
        """Render every page of the cluster. An empty list means the cluster is skipped."""
        total = self.config.cluster_count
        log.info(
            "Cluster %s/%s: selected pages %s (%s)",
            index, total, ", ".join(str(p) for p in cluster.pages), cluster.outcome.value,
        )

        images: List[Path] = []
        try:
            for page in cluster.pages:
                log.debug("Cluster %s/%s: converting page %s to image", index, total, page)
                image_path = await asyncio.to_thread(
                    self.renderer.render_page, document_path, page, workdir, f"{quiz.id}_page"
                )
                artifacts.append(image_path)
                images.append(image_path)
        except RenderError as e:
            log.error("Cluster %s/%s: %s", index, total, e)
            return []
        return images

    async def _generate_cluster(
        self, index: int, images: List[Path]
    ) -> Tuple[List[RawQuestion], Optional[CompletionResult]]:
        """
        One completion call for the rendered cluster, then parse the reply.

        Returns the parsed questions and the completion result (None when the
        call failed). Completion and parse failures end only this cluster.
        """
        total = self.config.cluster_count
        log.info("Cluster %s/%s: sending %s images for question generation...", index, total, len(images))
        try:
            result = await self.completion.generate(
                images,
                build_system_prompt(self.config.questions_per_cluster),
                build_user_prompt(len(images), self.config.questions_per_cluster),
            )
        except (OpenAIError, httpx.HTTPError) as e:
            log.error("Cluster %s/%s: completion failed: %s", index, total, e)
            return [], None

        if result.usage is not None:
            log.info(
                "Cluster %s/%s usage: %s prompt tokens, %s completion tokens. Estimated cost: $%.4f",
                index, total, result.usage.prompt_tokens, result.usage.completion_tokens,
                estimate_cost(result.usage),
            )

        try:
            questions = parse_questions(result.text)
        except GenerationParseError as e:
            log.error("Cluster %s/%s: failed to parse model response: %s | raw=%r",
                      index, total, e, e.raw[:500])
            return [], result

        log.info("Cluster %s/%s: %s questions", index, total, len(questions))
        return questions, result

    # ── Cleanup ───────────────────────────────────────────────────────────────

    def _cleanup(self, quiz: QuizRef, workdir: Optional[Path], artifacts: List[Path]) -> List[CleanupError]:
        """Best-effort removal of the PDF, rendered images and the temp dir. Never raises."""
        errors: List[CleanupError] = []
        for path in artifacts:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                errors.append(CleanupError(f"Could not delete {path}: {e}"))
        if workdir is not None and workdir.exists():
            try:
                shutil.rmtree(workdir)
            except OSError as e:
                errors.append(CleanupError(f"Could not delete {workdir}: {e}"))
        for err in errors:
            log.warning("Quiz %s: error during cleanup: %s", quiz.id, err)
        log.debug("Quiz %s: cleanup removed %s artifacts", quiz.id, len(artifacts) - len(errors))
        return errors
