"""
Tests for the quiz pipeline orchestration.

All collaborators are in-memory fakes (see conftest.py); the tests check
state transitions, failure isolation, cost threading and cleanup.
"""

import asyncio
import json
from collections import Counter

import httpx
import pytest

from generation.pipeline import PipelineConfig, QuizPipeline, QuizState
from generation.schemas import QuizRef, Usage
from generation.usage_tracker import CostLedger

from conftest import FakeBlobStore, FakeCompletion, FakeRenderer, FakeStore, question_payload

PDF = b"%PDF-1.4 fake"


def two_questions(correct=(0, 0)) -> str:
    return json.dumps([question_payload("Q-a", correct[0]), question_payload("Q-b", correct[1])])


def make_pipeline(tmp_path, rng, quizzes=None, responses=None, renderer=None, store=None,
                  objects=None, **config):
    quizzes = quizzes if quizzes is not None else [QuizRef(id=1, filepath="docs/1.pdf")]
    store = store or FakeStore(quizzes)
    completion = FakeCompletion(responses if responses is not None else [two_questions()])
    blob_store = FakeBlobStore(objects if objects is not None else {q.filepath: PDF for q in quizzes if q.filepath})
    renderer = renderer or FakeRenderer(page_count=20)
    pipeline = QuizPipeline(
        blob_store=blob_store,
        renderer=renderer,
        completion=completion,
        store=store,
        config=PipelineConfig(temp_root=str(tmp_path), **config),
        rng=rng,
    )
    return pipeline, store, completion, renderer, blob_store


def run(coro):
    return asyncio.run(coro)


class TestHappyPath:

    def test_quiz_when_processed_then_questions_saved(self, tmp_path, rng):
        pipeline, store, completion, renderer, _ = make_pipeline(tmp_path, rng)

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.DONE
        assert outcome.clusters == 5
        assert outcome.generated == 10
        assert outcome.inserted == 10
        assert outcome.degraded == 0
        assert len(store.inserted) == 10
        assert store.insert_calls == 1
        assert len(completion.calls) == 5
        assert all(len(call["images"]) == 3 for call in completion.calls)

    def test_saved_questions_have_balanced_positions(self, tmp_path, rng):
        pipeline, store, _, _, _ = make_pipeline(tmp_path, rng)

        run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        counts = Counter(q.correct_index for q in store.inserted)
        assert all(counts[p] in {2, 3} for p in range(4))
        for question in store.inserted:
            assert question.quiz_id == 1
            assert question.answers[question.correct_index] == "4"
            assert sorted(question.answers) == sorted(["4", "3", "5", "22"])

    def test_clusters_use_distinct_pages(self, tmp_path, rng):
        renderer = FakeRenderer(page_count=60)
        pipeline, _, _, _, _ = make_pipeline(tmp_path, rng, renderer=renderer)

        run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        pages = [int(p.name.split(".")[1]) for p in renderer.rendered]
        assert len(pages) == 15
        assert len(set(pages)) == 15

    def test_fenced_response_is_accepted(self, tmp_path, rng):
        fenced = "```json\n" + two_questions() + "\n```"
        pipeline, store, _, _, _ = make_pipeline(tmp_path, rng, responses=[fenced])

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.DONE
        assert len(store.inserted) == 10

    def test_instructions_sent_with_each_cluster(self, tmp_path, rng):
        pipeline, _, completion, _, _ = make_pipeline(tmp_path, rng)

        run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        call = completion.calls[0]
        assert "JSON array of 2 objects" in call["system"]
        assert "3 consecutive pages" in call["user"]

    def test_dry_run_skips_insert(self, tmp_path, rng):
        pipeline, store, _, _, _ = make_pipeline(tmp_path, rng, dry_run=True)

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.DONE
        assert outcome.inserted == 0
        assert store.insert_calls == 0


class TestCostTracking:

    def test_usage_is_added_to_ledger(self, tmp_path, rng):
        pipeline, _, _, _, _ = make_pipeline(tmp_path, rng)
        start = CostLedger(calls=1, prompt_tokens=7, completion_tokens=3, total_cost=0.5)

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), start))

        assert outcome.ledger.calls == 6
        assert outcome.ledger.prompt_tokens == 7 + 5 * 100
        assert outcome.ledger.completion_tokens == 3 + 5 * 50
        assert outcome.ledger.total_cost > 0.5
        assert start.calls == 1

    def test_run_threads_ledger_across_quizzes(self, tmp_path, rng):
        quizzes = [QuizRef(id=1, filepath="a.pdf"), QuizRef(id=2, filepath="b.pdf")]
        pipeline, store, _, _, _ = make_pipeline(tmp_path, rng, quizzes=quizzes)

        summary = run(pipeline.run())

        assert [o.quiz_id for o in summary.outcomes] == [1, 2]
        assert summary.ledger.calls == 10
        assert summary.ledger.prompt_tokens == 1000
        assert len(summary.succeeded) == 2
        assert len(store.inserted) == 20

    def test_failed_parse_still_costs(self, tmp_path, rng):
        pipeline, _, _, _, _ = make_pipeline(tmp_path, rng, responses=["not json"])

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.FAILED
        assert outcome.ledger.calls == 5


class TestFailureIsolation:

    def test_missing_document_when_processed_then_quiz_failed(self, tmp_path, rng):
        pipeline, store, completion, _, _ = make_pipeline(tmp_path, rng, objects={})

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.FAILED
        assert outcome.failed_at == QuizState.FETCHING
        assert "docs/1.pdf" in outcome.reason
        assert completion.calls == []
        assert store.insert_calls == 0

    def test_missing_document_does_not_stop_batch(self, tmp_path, rng):
        quizzes = [QuizRef(id=1, filepath="gone.pdf"), QuizRef(id=2, filepath="b.pdf")]
        pipeline, store, _, _, _ = make_pipeline(tmp_path, rng, quizzes=quizzes, objects={"b.pdf": PDF})

        summary = run(pipeline.run())

        assert [o.state for o in summary.outcomes] == [QuizState.FAILED, QuizState.DONE]
        assert {q.quiz_id for q in store.inserted} == {2}

    def test_quiz_without_filepath_is_skipped(self, tmp_path, rng):
        pipeline, _, _, _, blob_store = make_pipeline(tmp_path, rng)

        outcome = run(pipeline.process_quiz(QuizRef(id=4, filepath=None), CostLedger()))

        assert outcome.state == QuizState.SKIPPED
        assert blob_store.downloads == []

    def test_document_without_pages_fails_quiz(self, tmp_path, rng):
        pipeline, store, completion, _, _ = make_pipeline(tmp_path, rng, renderer=FakeRenderer(page_count=0))

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.FAILED
        assert outcome.failed_at == QuizState.FETCHING
        assert completion.calls == []

    def test_render_error_skips_only_that_cluster(self, tmp_path, rng):
        renderer = FakeRenderer(page_count=3, fail_first=1)
        pipeline, store, completion, _, _ = make_pipeline(tmp_path, rng, renderer=renderer)

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.DONE
        assert len(completion.calls) == 4
        assert len(store.inserted) == 8

    def test_unparsable_cluster_contributes_nothing(self, tmp_path, rng):
        responses = ["garbage", two_questions(), '{"Question": "not an array"}', two_questions(), two_questions()]
        pipeline, store, _, _, _ = make_pipeline(tmp_path, rng, responses=responses)

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.DONE
        assert outcome.generated == 6
        assert len(store.inserted) == 6

    def test_completion_error_skips_only_that_cluster(self, tmp_path, rng):
        responses = [httpx.ConnectError("connection refused"), two_questions(), two_questions(),
                     two_questions(), two_questions()]
        pipeline, store, _, _, _ = make_pipeline(tmp_path, rng, responses=responses)

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.DONE
        assert outcome.ledger.calls == 4
        assert len(store.inserted) == 8

    def test_unexpected_completion_error_when_processed_then_failed_at_generating(self, tmp_path, rng):
        responses = [RuntimeError("OPENAI_API_KEY is not set")]
        pipeline, store, completion, _, _ = make_pipeline(tmp_path, rng, responses=responses)

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.FAILED
        assert outcome.failed_at == QuizState.GENERATING
        assert "RuntimeError" in outcome.reason
        assert len(completion.calls) == 1
        assert store.insert_calls == 0

    def test_unexpected_render_error_when_processed_then_failed_at_rendering(self, tmp_path, rng):
        class BrokenRenderer(FakeRenderer):
            def render_page(self, document_path, page_number, output_dir, basename="page"):
                raise ValueError("unsupported colorspace")

        renderer = BrokenRenderer(page_count=20)
        pipeline, _, completion, _, _ = make_pipeline(tmp_path, rng, renderer=renderer)

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.FAILED
        assert outcome.failed_at == QuizState.RENDERING
        assert completion.calls == []

    def test_no_questions_when_processed_then_failed_without_insert(self, tmp_path, rng):
        pipeline, store, _, _, _ = make_pipeline(tmp_path, rng, responses=["[]"])

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.FAILED
        assert outcome.generated == 0
        assert "any questions" in outcome.reason
        assert store.insert_calls == 0

    def test_write_error_fails_only_that_quiz(self, tmp_path, rng):
        quizzes = [QuizRef(id=1, filepath="a.pdf"), QuizRef(id=2, filepath="b.pdf"), QuizRef(id=3, filepath="c.pdf")]
        store = FakeStore(quizzes, fail_for={2})
        pipeline, _, _, _, _ = make_pipeline(tmp_path, rng, quizzes=quizzes, store=store)

        summary = run(pipeline.run())

        states = {o.quiz_id: o for o in summary.outcomes}
        assert states[1].state == QuizState.DONE
        assert states[2].state == QuizState.FAILED
        assert states[2].failed_at == QuizState.PERSISTING
        assert states[3].state == QuizState.DONE
        assert {q.quiz_id for q in store.inserted} == {1, 3}

    def test_malformed_questions_are_saved_degraded(self, tmp_path, rng):
        bad = json.dumps([
            {"Question": "short", "answers": ["a", "b", "c"], "correct_answer": 1},
            question_payload("ok", 3),
        ])
        pipeline, store, _, _, _ = make_pipeline(tmp_path, rng, responses=[bad], cluster_count=1)

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.DONE
        assert outcome.degraded == 1
        degraded = [q for q in store.inserted if q.degraded]
        assert len(degraded) == 1
        assert degraded[0].answers == ["a", "b", "c"]
        assert degraded[0].correct_index == 1


class TestRun:

    def test_no_quizzes_when_run_then_empty_summary(self, tmp_path, rng):
        pipeline, _, completion, _, _ = make_pipeline(tmp_path, rng, quizzes=[])

        summary = run(pipeline.run())

        assert summary.outcomes == []
        assert summary.ledger == CostLedger()
        assert completion.calls == []

    def test_single_quiz_filter(self, tmp_path, rng):
        quizzes = [QuizRef(id=1, filepath="a.pdf"), QuizRef(id=2, filepath="b.pdf")]
        pipeline, store, _, _, _ = make_pipeline(tmp_path, rng, quizzes=quizzes)

        summary = run(pipeline.run(quiz_id=2))

        assert [o.quiz_id for o in summary.outcomes] == [2]
        assert {q.quiz_id for q in store.inserted} == {2}


class TestCleanup:

    def test_artifacts_removed_after_success(self, tmp_path, rng):
        pipeline, _, _, renderer, _ = make_pipeline(tmp_path, rng)

        run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert renderer.rendered
        assert not any(p.exists() for p in renderer.rendered)
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.parametrize("responses", [["[]"], ["garbage"]])
    def test_artifacts_removed_after_failure(self, tmp_path, rng, responses):
        pipeline, _, _, renderer, _ = make_pipeline(tmp_path, rng, responses=responses)

        outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.FAILED
        assert list(tmp_path.iterdir()) == []

    def test_cleanup_errors_are_logged_not_raised(self, tmp_path, rng, caplog):
        renderer = FakeRenderer(page_count=3, as_directories=True)
        pipeline, _, _, _, _ = make_pipeline(tmp_path, rng, renderer=renderer, cluster_count=1)

        with caplog.at_level("WARNING", logger="generation.pipeline"):
            outcome = run(pipeline.process_quiz(QuizRef(id=1, filepath="docs/1.pdf"), CostLedger()))

        assert outcome.state == QuizState.DONE
        assert outcome.cleanup_errors == 3
        assert "error during cleanup" in caplog.text
        assert list(tmp_path.iterdir()) == []
