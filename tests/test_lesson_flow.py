"""Tests for the lesson workflow state machine."""

import asyncio

import pytest

from conftest import make_item, make_lesson
from errors import InvalidTransition, NetworkFailure, UpstreamError
from lesson_flow import LessonSession, WorkflowState
from schemas import Explanation


class _FakeClient:
    def __init__(self, *, lesson=None, lesson_error=None, explanation_error=None):
        self.lesson = lesson or make_lesson()
        self.lesson_error = lesson_error
        self.explanation_error = explanation_error
        self.lesson_calls = []
        self.explain_calls = []

    async def generate_lesson(self, item, level):
        self.lesson_calls.append((item.id, level))
        if self.lesson_error:
            raise self.lesson_error
        return self.lesson.model_copy(update={"level": level})

    async def explain(self, item, language):
        self.explain_calls.append((item.id, language))
        if self.explanation_error:
            raise self.explanation_error
        return Explanation(
            id=f"explanation_{item.id}_{language}_1",
            media_id=item.id,
            language=language,
            explanation="It is a cat.",
            cultural_context="Cats rule the internet.",
            created_at=1,
        )


class _GatedClient(_FakeClient):
    """Holds lesson generation until the test opens the gate."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.started = asyncio.Event()
        self.gate = asyncio.Event()

    async def generate_lesson(self, item, level):
        self.started.set()
        await self.gate.wait()
        return await super().generate_lesson(item, level)


def _session(store, client=None):
    return LessonSession(make_item("m1"), store, client or _FakeClient())


def test_full_workflow_persists_lesson_progress_and_bookmark(store):
    client = _FakeClient()
    session = _session(store, client)

    async def _run():
        session.begin()
        explanation = await session.request_explanation("german")
        assert session.state is WorkflowState.EXPLANATION_PENDING
        session.proceed_to_levels()
        lesson = await session.select_level("intermediate")
        session.update_answer("q1", "sits")
        session.update_answer("q2", "False")
        preview = session.score_preview()
        result = await session.submit_answers()
        marker = await session.save_lesson()
        return explanation, lesson, preview, result, marker

    explanation, lesson, preview, result, marker = asyncio.run(_run())

    assert session.state is WorkflowState.LESSON_READY
    assert lesson.level == "intermediate"
    assert client.lesson_calls == [("m1", "intermediate")]
    assert (result.score, result.correct_count, result.total) == (50, 1, 2)
    assert preview == result
    assert marker.lesson_id == lesson.id

    async def _stored():
        return (
            await store.get_lesson(lesson.id),
            await store.get_progress(lesson.id),
            await store.get_explanations_for_media("m1"),
        )

    stored_lesson, progress, explanations = asyncio.run(_stored())
    assert stored_lesson == lesson
    assert progress.score == 50
    assert progress.answers == {"q1": "sits", "q2": "False"}
    assert explanations == [explanation]


def test_explanation_step_can_be_skipped(memory_store):
    client = _FakeClient()
    session = _session(memory_store, client)

    session.begin()
    session.proceed_to_levels()

    assert session.state is WorkflowState.LEVEL_SELECTION
    assert session.explanation is None
    assert client.explain_calls == []


def test_failed_generation_returns_to_level_selection(memory_store):
    client = _FakeClient(lesson_error=UpstreamError("Failed to generate lesson. Please try again.", status_code=500))
    session = _session(memory_store, client)
    session.begin()
    session.proceed_to_levels()

    with pytest.raises(UpstreamError):
        asyncio.run(session.select_level("beginner"))

    assert session.state is WorkflowState.LEVEL_SELECTION
    assert session.lesson is None
    assert asyncio.run(memory_store.get_all_lessons()) == []

    client.lesson_error = None
    lesson = asyncio.run(session.select_level("beginner"))
    assert session.state is WorkflowState.LESSON_READY
    assert len(client.lesson_calls) == 2
    assert lesson.level == "beginner"


def test_failed_explanation_keeps_the_step(memory_store):
    session = _session(memory_store, _FakeClient(explanation_error=NetworkFailure("offline")))
    session.begin()

    with pytest.raises(NetworkFailure):
        asyncio.run(session.request_explanation("french"))

    assert session.state is WorkflowState.EXPLANATION_PENDING
    session.proceed_to_levels()
    assert session.state is WorkflowState.LEVEL_SELECTION


def test_resubmission_overwrites_progress(memory_store):
    session = _session(memory_store)
    session.begin()
    session.proceed_to_levels()
    lesson = asyncio.run(session.select_level("advanced"))

    session.update_answer("q1", "sat")
    first = asyncio.run(session.submit_answers())
    session.update_answer("q1", "sits")
    session.update_answer("q2", "True")
    second = asyncio.run(session.submit_answers())

    assert (first.score, second.score) == (0, 100)
    assert asyncio.run(memory_store.get_progress(lesson.id)).score == 100
    assert len(asyncio.run(memory_store.get_all_progress())) == 1


@pytest.mark.parametrize(
    "action",
    [
        lambda s: s.proceed_to_levels(),
        lambda s: s.update_answer("q1", "x"),
        lambda s: s.score_preview(),
        lambda s: asyncio.run(s.select_level("beginner")),
        lambda s: asyncio.run(s.request_explanation("english")),
        lambda s: asyncio.run(s.submit_answers()),
        lambda s: asyncio.run(s.save_lesson()),
    ],
)
def test_actions_rejected_while_idle(memory_store, action):
    session = _session(memory_store)

    with pytest.raises(InvalidTransition):
        action(session)
    assert session.state is WorkflowState.IDLE


def test_level_must_be_known(memory_store):
    session = _session(memory_store)
    session.begin()
    session.proceed_to_levels()

    with pytest.raises(ValueError):
        asyncio.run(session.select_level("expert"))
    assert session.state is WorkflowState.LEVEL_SELECTION


def test_reset_clears_session(memory_store):
    session = _session(memory_store)
    session.begin()
    session.proceed_to_levels()
    asyncio.run(session.select_level("beginner"))
    session.update_answer("q1", "sits")

    session.reset()

    assert session.state is WorkflowState.IDLE
    assert session.lesson is None
    assert session.answers == {}
    session.begin()
    assert session.state is WorkflowState.EXPLANATION_PENDING


@pytest.mark.parametrize("restart", [False, True])
def test_lesson_arriving_after_reset_is_discarded(memory_store, restart):
    async def _run():
        client = _GatedClient()
        session = _session(memory_store, client)
        session.begin()
        session.proceed_to_levels()
        task = asyncio.create_task(session.select_level("beginner"))
        await client.started.wait()

        session.reset()
        if restart:
            session.begin()
        client.gate.set()
        lesson = await task
        return session, lesson

    session, lesson = asyncio.run(_run())

    expected = WorkflowState.EXPLANATION_PENDING if restart else WorkflowState.IDLE
    assert session.state is expected
    assert session.lesson is None
    # the orphaned lesson is still stored
    assert asyncio.run(memory_store.get_lesson(lesson.id)) == lesson


def test_late_failure_after_reset_leaves_state_alone(memory_store):
    async def _run():
        client = _GatedClient(lesson_error=NetworkFailure("offline"))
        session = _session(memory_store, client)
        session.begin()
        session.proceed_to_levels()
        task = asyncio.create_task(session.select_level("advanced"))
        await client.started.wait()

        session.reset()
        client.gate.set()
        with pytest.raises(NetworkFailure):
            await task
        return session

    assert asyncio.run(_run()).state is WorkflowState.IDLE


def test_cancelled_generation_returns_to_level_selection(memory_store):
    async def _run():
        client = _GatedClient()
        session = _session(memory_store, client)
        session.begin()
        session.proceed_to_levels()
        task = asyncio.create_task(session.select_level("intermediate"))
        await client.started.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return session

    session = asyncio.run(_run())

    assert session.state is WorkflowState.LEVEL_SELECTION
    assert session.lesson is None
    session.client = _FakeClient()
    assert asyncio.run(session.select_level("intermediate")).level == "intermediate"
    assert session.state is WorkflowState.LESSON_READY
