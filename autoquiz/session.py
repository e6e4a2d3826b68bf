"""
Quiz Session Module
Drives one browser session through login, quiz discovery and the per-quiz
navigate / extract / resolve / inject / submit sequence.
"""

import logging
from enum import Enum
from typing import List, Optional

from .api_utils import ModelManager
from .browser import BrowserManager
from .cancellation import CancellationToken
from .config import ConfigStore, Timings
from .errors import (AuthFailure, CancelledByUser, InjectionMismatch, NavigationFailure, QuizSolverError,
                     SubmissionUncertain)
from .events import EventKind, ProgressReporter
from .extractor import QuestionExtractor
from .injector import AnswerInjector, InjectionReport, QuizSubmitter
from .parser import BASE_URL, PageParser, SentinelPhrases, find_sentinel, quiz_confirm_url
from .resolver import AnswerResolver
from .schema import QuizDescriptor

logger = logging.getLogger(__name__)

LOGIN_URL = f"{BASE_URL}/web/index.php?c=passport&m=index"
COURSE_LIST_URL = f"{BASE_URL}/web/index.php?c=clazzcourse&m=index"
QUESTION_CONTAINER = 'div.con-list'


class SessionState(Enum):
    IDLE = "idle"
    LAUNCHING = "launching"
    AUTHENTICATING = "authenticating"
    NAVIGATING = "navigating"
    EXTRACTING = "extracting"
    RESOLVING = "resolving"
    INJECTING = "injecting"
    COUNTDOWN = "countdown"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    SKIPPED_UNANSWERABLE = "skipped_unanswerable"
    FAILED = "failed"


class QuizOutcome(Enum):
    COMPLETED = "completed"
    SKIPPED_UNANSWERABLE = "skipped_unanswerable"
    FAILED = "failed"


class QuizSessionController:
    """
    Owns the browser for the duration of a run.

    Quiz-level failures are turned into a FAILED outcome here; only launch and
    login failures (fatal) and cancellation leave this class as exceptions.
    """

    def __init__(self, config: ConfigStore, browser: BrowserManager,
                 reporter: Optional[ProgressReporter] = None,
                 timings: Optional[Timings] = None,
                 extractor: Optional[QuestionExtractor] = None,
                 resolver: Optional[AnswerResolver] = None,
                 injector: Optional[AnswerInjector] = None,
                 submitter: Optional[QuizSubmitter] = None,
                 sentinels: Optional[SentinelPhrases] = None,
                 parser: Optional[PageParser] = None):
        self.config = config
        self.browser = browser
        self.reporter = (reporter or ProgressReporter()).child(logger)
        self.timings = timings or Timings()
        self.extractor = extractor or QuestionExtractor()
        self.injector = injector or AnswerInjector()
        self.submitter = submitter or QuizSubmitter(self.timings, self.reporter)
        self.sentinels = sentinels or SentinelPhrases()
        self.parser = parser or PageParser()
        self._resolver = resolver
        self.state = SessionState.IDLE

    def _set_state(self, state: SessionState):
        if state is not self.state:
            logger.debug(f"Session state: {self.state.value} -> {state.value}")
        self.state = state

    @property
    def resolver(self) -> AnswerResolver:
        """Built on first use so it sees the model profiles loaded after login."""
        if self._resolver is None:
            manager = ModelManager(self.config.enabled_models())
            self._resolver = AnswerResolver(manager, self.reporter, chunk_gap=self.timings.chunk_gap)
        return self._resolver

    # Lifecycle

    async def launch(self):
        self._set_state(SessionState.LAUNCHING)
        self.reporter.log("正在启动浏览器...")
        try:
            await self.browser.start()
        except QuizSolverError:
            self._set_state(SessionState.IDLE)
            raise

    async def close(self):
        await self.browser.close()
        self._set_state(SessionState.IDLE)

    async def login(self, token: Optional[CancellationToken] = None):
        """Log in with the stored credentials and persist the session cookie."""
        token = token or CancellationToken()
        self._set_state(SessionState.AUTHENTICATING)
        self.reporter.log("正在登录...")
        user = self.config.user_data

        try:
            await token.run(self.browser.goto(LOGIN_URL))
            await token.sleep(self.timings.element_settle)
            if not await token.run(self.browser.wait_visible('#account-name', self.timings.container_timeout)):
                raise AuthFailure("登录失败: 未找到登录表单")
            await token.run(self.browser.fill('#account-name', user.user_name))
            await token.sleep(self.timings.short_pause)
            await token.run(self.browser.fill('#user-pwd', user.password))
            await token.sleep(self.timings.short_pause)
            await token.run(self.browser.click('#login-button-1'))
            await token.sleep(self.timings.login_settle)
        except (CancelledByUser, AuthFailure):
            raise
        except Exception as e:
            raise AuthFailure(f"登录失败: {e}") from e

        await self._save_cookies()
        self.reporter.log("登录成功!")
        self._set_state(SessionState.IDLE)

    async def _save_cookies(self):
        try:
            cookie = await self.browser.cookie_string()
            self.config.update_cookie(cookie)
            self.config.load()
        except Exception as e:
            self.reporter.log(f"警告: 保存Cookie失败: {e}")
            return
        logger.info("Session cookie saved")

    # Per-quiz sequence

    async def process_quiz(self, quiz: QuizDescriptor, position: int = 1, batch_size: int = 1,
                           token: Optional[CancellationToken] = None) -> QuizOutcome:
        token = token or CancellationToken()
        name = quiz.name or '未命名题库'
        try:
            outcome = await self._process(quiz, name, position, batch_size, token)
        except CancelledByUser:
            self._set_state(SessionState.IDLE)
            raise
        except Exception as e:
            self.reporter.log(f"处理失败: {e}")
            outcome = QuizOutcome.FAILED

        self._set_state(SessionState[outcome.name])
        self._set_state(SessionState.IDLE)
        return outcome

    async def _process(self, quiz: QuizDescriptor, name: str, position: int, batch_size: int,
                       token: CancellationToken) -> QuizOutcome:
        token.raise_if_cancelled()
        self.reporter.progress(f"正在加载: {name}", 0, 0, name, position, batch_size)

        self._set_state(SessionState.NAVIGATING)
        await token.run(self.browser.goto(quiz.url))
        await token.sleep(self.timings.quiz_settle)

        html = await token.run(self.browser.get_html())
        phrase = find_sentinel(html, self.sentinels.after_navigation)
        if phrase:
            return self._skip(quiz, name, phrase)

        if not await token.run(self.browser.wait_visible(QUESTION_CONTAINER, self.timings.container_timeout)):
            html = await token.run(self.browser.get_html())
            phrase = find_sentinel(html, self.sentinels.after_timeout)
            if phrase:
                return self._skip(quiz, name, phrase)
            raise NavigationFailure("等待题目容器加载超时")

        self._set_state(SessionState.EXTRACTING)
        questions = await self.extractor.extract(self.browser.page, token)
        if not questions:
            self.reporter.emit(EventKind.LOG, "当前页面未找到题目", quiz_name=name,
                               quiz_position=position, batch_size=batch_size)
            return QuizOutcome.COMPLETED

        total = len(questions)
        self.reporter.progress(f"【{name}】共 {total} 题，正在获取答案...", 0, total, name, position, batch_size)

        self._set_state(SessionState.RESOLVING)
        batch = await self.resolver.resolve_batch(questions, token, name, position, batch_size)
        if batch.cancelled:
            raise CancelledByUser("任务已取消")
        token.raise_if_cancelled()
        logger.info(f"Resolved {batch.answered}/{total} answers for {quiz.url}")

        self._set_state(SessionState.INJECTING)
        self.reporter.progress(f"【{name}】正在批量填写 {total} 题...", 0, total, name, position, batch_size)
        try:
            report = await self.injector.inject(self.browser.page, questions, batch.slots, token)
        except InjectionMismatch as e:
            self.reporter.log(f"批量填写出错: {e}")
            report = InjectionReport(filled=0, skipped=total)
        if report.skipped:
            logger.warning(f"{report.skipped} of {total} answers could not be filled")
        self.reporter.progress(f"【{name}】{report.filled} 题已填写完毕，正在提交...", total, total,
                               name, position, batch_size)

        delay = self.config.submit_delay
        if delay > 0:
            self._set_state(SessionState.COUNTDOWN)
            await self.submitter.countdown(quiz.url, delay, token)

        self._set_state(SessionState.SUBMITTING)
        try:
            await self.submitter.submit(self.browser.page, token)
        except SubmissionUncertain as e:
            self.reporter.log(f"提交状态未知: {e}")

        self.config.add_completed_url(quiz.url)
        self.config.mark_quiz_completed(quiz.url)
        self.reporter.emit(EventKind.QUIZ_COMPLETED, quiz.url)
        self.reporter.log("测验提交成功!")
        return QuizOutcome.COMPLETED

    def _skip(self, quiz: QuizDescriptor, name: str, phrase: str) -> QuizOutcome:
        if phrase in self.sentinels.blank_page:
            self.reporter.log(f"【{name}】页面为空白，可能无法作答，跳过")
        else:
            self.reporter.log(f"【{name}】已用尽作答机会，跳过")
        logger.debug(f"Sentinel matched: {phrase}")
        self.config.add_completed_url(quiz.url)
        return QuizOutcome.SKIPPED_UNANSWERABLE

    # Discovery

    async def fetch_quizzes(self, token: Optional[CancellationToken] = None) -> List[QuizDescriptor]:
        """
        Discover in-progress quizzes of every open course through the browser.

        Courses or confirm pages that fail to load are logged and skipped.
        """
        token = token or CancellationToken()
        self.reporter.log("正在获取课程列表...")

        self._set_state(SessionState.NAVIGATING)
        try:
            await token.run(self.browser.goto(COURSE_LIST_URL))
            await token.sleep(self.timings.page_settle)
            courses = self.parser.parse_courses(await token.run(self.browser.get_html()))
        finally:
            self._set_state(SessionState.IDLE)
        self.reporter.log(f"找到 {len(courses)} 个开放课程")

        pending = []
        seen = set()
        for i, course in enumerate(courses, 1):
            token.raise_if_cancelled()
            if not course['url']:
                continue
            self.reporter.progress(f"正在获取课程 {i}/{len(courses)}: {course['name']}", i, len(courses))
            try:
                html = await self._load(course['url'], token)
            except NavigationFailure as e:
                self.reporter.log(f"导航到课程 {course['name']} 失败: {e}")
                continue

            for quiz in self.parser.parse_interactions(html):
                if quiz['id'] in seen:
                    self.reporter.log(f"  跳过重复题库: {quiz['title']}")
                    continue
                seen.add(quiz['id'])
                pending.append((course, quiz))
                self.reporter.log(f"  找到题库: {quiz['title']} (课程: {course['name']})")

        self.reporter.log(f"共找到 {len(pending)} 个题库，正在获取答题链接...")

        quizzes = []
        for i, (course, quiz) in enumerate(pending, 1):
            token.raise_if_cancelled()
            self.reporter.progress(f"获取答题链接 {i}/{len(pending)}: {quiz['title']}", i, len(pending))
            try:
                url = await self._answer_url(quiz_confirm_url(course['id'], quiz['id']), token)
            except NavigationFailure as e:
                self.reporter.log(f"  导航到确认页面失败: {e}")
                continue
            if not url:
                self.reporter.log(f"  未找到答题URL: {quiz['title']}")
                continue

            quizzes.append(QuizDescriptor(
                url=url,
                course_id=course['id'],
                course_name=course['name'],
                quiz_id=quiz['id'],
                name=quiz['title'],
                completed=self.config.is_url_completed(url),
            ))
            self.reporter.debug(f"  获取答题URL成功: {quiz['title']}")

        self.reporter.log(f"共获取 {len(quizzes)} 个有效答题链接")
        return quizzes

    async def _load(self, url: str, token: CancellationToken) -> str:
        await token.run(self.browser.goto(url))
        await token.sleep(self.timings.element_settle)
        return await token.run(self.browser.get_html())

    async def _answer_url(self, confirm_url: str, token: CancellationToken) -> str:
        html = await self._load(confirm_url, token)
        url = self.parser.parse_hidden_url(html)
        if url:
            return url
        link = self.parser.parse_operate_link(html)
        if not link:
            return ''
        return self.parser.parse_hidden_url(await self._load(link, token))
