import asyncio

import pytest

from autoquiz.errors import AuthFailure, ServiceBusy
from autoquiz.events import EventKind
from autoquiz.schema import QuizDescriptor
from autoquiz.service import SolverService
from autoquiz.session import QuizOutcome

from conftest import FakeBrowser


class FakeSession:
    """Session controller double; quizzes block until the run is cancelled."""

    def __init__(self, config, browser, reporter=None, timings=None, quizzes=None, login_error=None):
        self.config = config
        self.browser = browser
        self.quizzes = quizzes or []
        self.login_error = login_error

    async def launch(self):
        await self.browser.start()

    async def login(self, token):
        if self.login_error is not None:
            raise self.login_error

    async def fetch_quizzes(self, token):
        return list(self.quizzes)

    async def process_quiz(self, quiz, position, batch_size, token):
        await token.sleep(30)
        return QuizOutcome.COMPLETED

    async def close(self):
        await self.browser.close()


def make_service(config, bus, timings, **session_kwargs):
    def factory(config, browser, reporter=None, timings=None):
        return FakeSession(config, browser, reporter, timings, **session_kwargs)

    return SolverService(config, bus=bus, timings=timings, browser_factory=FakeBrowser, controller_factory=factory)


@pytest.mark.asyncio
async def test_second_start_is_rejected_and_stop_cancels(config, bus, timings, events):
    service = make_service(config, bus, timings)

    assert service.start(['https://www.mosoteach.cn/quiz/a'])
    task = service._task
    assert not service.start()
    assert service.status()['currentTask'] == 'run'

    assert await service.stop()
    await asyncio.wait_for(task, timeout=5)

    assert not service.running
    assert EventKind.CANCELLED in [e.kind for e in events]
    assert service.status()['running'] is False


@pytest.mark.asyncio
async def test_stop_without_task(config, bus, timings):
    service = make_service(config, bus, timings)
    assert not await service.stop()


@pytest.mark.asyncio
async def test_fetch_quizzes_replaces_the_cache(config, bus, timings, events):
    listed = [QuizDescriptor(url='https://www.mosoteach.cn/quiz/1', course_id='C1', course_name='生物学',
                             quiz_id='Q1', name='第一章测验')]
    service = make_service(config, bus, timings, quizzes=listed)

    quizzes = await service.fetch_quizzes()

    assert [q.url for q in quizzes] == [listed[0].url]
    assert [q.name for q in config.cached_quizzes()] == ['第一章测验']
    assert events[-1].message == '找到 1 个题库'
    assert not service.running


@pytest.mark.asyncio
async def test_fetch_quizzes_while_running_is_busy(config, bus, timings):
    service = make_service(config, bus, timings)
    service.start(['https://www.mosoteach.cn/quiz/a'])
    task = service._task

    with pytest.raises(ServiceBusy):
        await service.fetch_quizzes()
    with pytest.raises(ServiceBusy):
        await service.login()

    await service.stop()
    await asyncio.wait_for(task, timeout=5)


@pytest.mark.asyncio
async def test_login_success_and_failure(config, bus, timings, events):
    assert await make_service(config, bus, timings).login()
    assert events[-1].kind is EventKind.COMPLETE

    failing = make_service(config, bus, timings, login_error=AuthFailure('登录失败: 密码错误'))
    assert not await failing.login()
    assert events[-1].kind is EventKind.ERROR
    assert events[-1].message == '登录失败: 密码错误'
    assert not failing.running
