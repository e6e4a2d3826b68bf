import pytest

from autoquiz.errors import CancelledByUser, InjectionMismatch, SubmissionUncertain
from autoquiz.events import EventKind
from autoquiz.injector import (CLICK_SUBMIT_SCRIPT, CONFIRM_DIALOG_SCRIPT, FILL_SCRIPT, SECOND_CONFIRM_SCRIPT,
                               AnswerInjector, QuizSubmitter, build_fill_plan)
from autoquiz.schema import AnswerSlot, Question, QuestionType

from conftest import FakePage, sample_questions


def slots_for(questions, answers):
    return [AnswerSlot(i, q.type, a) for i, (q, a) in enumerate(zip(questions, answers))]


def test_fill_plan_skips_empty_slots_and_tracks_fill_ordinal():
    questions = [
        Question(QuestionType.FILL, '空1'),
        Question(QuestionType.SINGLE, '选1'),
        Question(QuestionType.FILL, '空2'),
        Question(QuestionType.FILL, '空3'),
    ]
    plan = build_fill_plan(questions, slots_for(questions, ['甲', 'B', '', '丙']))

    assert [(p['index'], p['type'], p['answer']) for p in plan] == [
        (0, 'fill', '甲'), (1, 'single', 'B'), (3, 'fill', '丙')]
    assert [p['fillIndex'] for p in plan if p['type'] == 'fill'] == [0, 2]


@pytest.mark.asyncio
async def test_inject_runs_one_script_with_all_answers(token):
    page = FakePage()
    questions = sample_questions()
    report = await AnswerInjector().inject(page, questions, slots_for(questions, ['A', 'C', 'A,C', '']), token)

    assert page.scripts() == [FILL_SCRIPT]
    _, plan = page.calls[0]
    assert [p['answer'] for p in plan] == ['A', 'C', 'A,C']
    assert report.filled == 3
    assert report.skipped == 1


@pytest.mark.asyncio
async def test_inject_without_answers_touches_nothing(token):
    page = FakePage()
    questions = sample_questions()
    report = await AnswerInjector().inject(page, questions, slots_for(questions, [''] * 4), token)

    assert page.calls == []
    assert report.skipped == 4


@pytest.mark.asyncio
async def test_script_error_becomes_injection_mismatch(token):
    class BrokenPage(FakePage):
        async def evaluate(self, expression, arg=None):
            raise RuntimeError('Target closed')

    questions = sample_questions()
    with pytest.raises(InjectionMismatch):
        await AnswerInjector().inject(BrokenPage(), questions, slots_for(questions, ['A'] * 4), token)


@pytest.mark.asyncio
async def test_submit_clicks_submit_then_confirms(token, timings):
    page = FakePage()
    clicked = await QuizSubmitter(timings).submit(page, token)

    assert clicked
    assert page.scripts() == [CLICK_SUBMIT_SCRIPT, CONFIRM_DIALOG_SCRIPT, SECOND_CONFIRM_SCRIPT]


@pytest.mark.asyncio
async def test_submit_reports_missing_button(token, timings):
    page = FakePage(submit_found=False, dialog_found=False)
    assert not await QuizSubmitter(timings).submit(page, token)


@pytest.mark.asyncio
async def test_submit_click_error_still_confirms_dialogs(token, timings):
    page = FakePage(submit_found=RuntimeError('Execution context was destroyed'))

    with pytest.raises(SubmissionUncertain):
        await QuizSubmitter(timings).submit(page, token)
    assert page.scripts() == [CLICK_SUBMIT_SCRIPT, CONFIRM_DIALOG_SCRIPT, SECOND_CONFIRM_SCRIPT]


@pytest.mark.asyncio
async def test_countdown_emits_one_event_per_second(token, timings, reporter, events):
    url = 'https://www.mosoteach.cn/web/index.php?c=interaction_quiz&m=reply&id=Q1'
    await QuizSubmitter(timings, reporter).countdown(url, 3, token)

    countdown = [e for e in events if e.kind is EventKind.SUBMIT_COUNTDOWN]
    assert [(e.current_index, e.total_count) for e in countdown] == [(1, 3), (2, 3), (3, 3)]
    assert all(e.message == url for e in countdown)


@pytest.mark.asyncio
async def test_countdown_stops_when_cancelled(token, timings, reporter):
    token.cancel()
    with pytest.raises(CancelledByUser):
        await QuizSubmitter(timings, reporter).countdown('u', 3, token)
