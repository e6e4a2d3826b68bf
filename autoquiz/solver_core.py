"""
Solver Core Module
Runs a batch of quizzes through one logged-in browser session.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .cancellation import CancellationToken
from .config import ConfigStore, Timings
from .errors import CancelledByUser, QuizSolverError
from .events import EventKind, ProgressReporter
from .listing import QuizLister
from .schema import QuizDescriptor
from .session import QuizSessionController

logger = logging.getLogger(__name__)


class RunOutcome(Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class QuizSolver:
    """Main quiz solving engine: launch, login, collect quizzes, process them in order."""

    def __init__(self, config: ConfigStore, controller: QuizSessionController,
                 reporter: Optional[ProgressReporter] = None,
                 timings: Optional[Timings] = None,
                 lister_factory: Optional[Callable[[], QuizLister]] = None):
        self.config = config
        self.controller = controller
        self.reporter = (reporter or ProgressReporter()).child(logger)
        self.timings = timings or Timings()
        self.lister_factory = lister_factory or (lambda: QuizLister(self.config))

    async def run(self, quizzes: Sequence[QuizDescriptor], token: CancellationToken) -> int:
        """
        Process quizzes one after another.

        A failed quiz is reported and the batch moves on; only cancellation stops
        it early. Returns the number of quizzes processed.
        """
        total = len(quizzes)
        if total == 0:
            self.reporter.emit(EventKind.COMPLETE, "当前已无测试题可做")
            return 0

        self.reporter.emit(EventKind.PROGRESS, f"共有 {total} 个题库待处理", batch_size=total)

        processed = 0
        for position, quiz in enumerate(quizzes, 1):
            token.raise_if_cancelled()
            name = quiz.name or f"题库 {position}"
            self.reporter.progress(f"正在处理: {name} ({position}/{total})", 0, 0, name, position, total)

            outcome = await self.controller.process_quiz(quiz, position, total, token)
            processed += 1
            logger.info(f"Quiz {position}/{total} {outcome.value}: {quiz.url}")

            token.raise_if_cancelled()
            await token.sleep(self.timings.inter_quiz)

        self.reporter.emit(EventKind.COMPLETE, "已完成所有题库", quiz_position=total, batch_size=total)
        return processed

    async def solve(self, token: CancellationToken, quiz_urls: Optional[List[str]] = None) -> RunOutcome:
        """
        Full run: launch the browser, log in, build the quiz list and run it.

        Explicit URLs are processed as selected; without them every pending quiz is
        listed over HTTP with the cookie from this login. The browser is always
        closed on the way out.
        """
        try:
            await self.controller.launch()
            await self.controller.login(token)
            quizzes = await self._collect(token, quiz_urls)
            await self.run(quizzes, token)
            return RunOutcome.COMPLETED
        except CancelledByUser:
            self.reporter.log("任务已取消")
            self.reporter.emit(EventKind.CANCELLED, "任务已取消")
            return RunOutcome.CANCELLED
        except QuizSolverError as e:
            logger.error(f"Run failed: {e}")
            self.reporter.emit(EventKind.ERROR, str(e))
            raise
        finally:
            await self.controller.close()

    async def _collect(self, token: CancellationToken, quiz_urls: Optional[List[str]]) -> List[QuizDescriptor]:
        if quiz_urls:
            quizzes = [QuizDescriptor(url=url, name=f"选中题库 {i}") for i, url in enumerate(quiz_urls, 1)]
        else:
            self.reporter.log("正在获取题库列表...")
            lister = self.lister_factory()
            try:
                quizzes = await token.run(asyncio.to_thread(lister.fetch_quizzes, token))
            finally:
                lister.close()

        pending = [q for q in quizzes if not self.config.is_url_completed(q.url)]
        skipped = len(quizzes) - len(pending)
        if skipped:
            self.reporter.log(f"跳过 {skipped} 个已完成的题库")
        return pending
