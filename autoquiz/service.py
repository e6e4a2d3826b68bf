"""
Solver Service Module
Single-task supervisor used by the HTTP front-end: starts and stops runs,
performs discovery and login, and relays progress events to listeners.
"""

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .browser import BrowserManager
from .cancellation import CancellationToken
from .config import ConfigStore, Settings, Timings
from .errors import CancelledByUser, QuizSolverError, ServiceBusy
from .events import EventBus, EventKind, ProgressEvent, ProgressReporter
from .schema import QuizDescriptor
from .session import QuizSessionController
from .solver_core import QuizSolver

logger = logging.getLogger(__name__)


class SolverService:
    """
    At most one task (run, discovery or login) is active at a time; a second
    request is rejected, never queued.

    The lock only guards the bookkeeping below and is never held across an await.
    """

    def __init__(self, config: ConfigStore, settings: Optional[Settings] = None,
                 bus: Optional[EventBus] = None, timings: Optional[Timings] = None,
                 browser_factory: Optional[Callable[[], BrowserManager]] = None,
                 controller_factory: Optional[Callable[..., QuizSessionController]] = None):
        self.config = config
        self.settings = settings or Settings()
        self.bus = bus or EventBus()
        self.timings = timings or Timings()
        self.reporter = ProgressReporter(self.bus, logger)
        self.browser_factory = browser_factory or self._default_browser
        self.controller_factory = controller_factory or QuizSessionController

        self._lock = threading.Lock()
        self._running = False
        self._task_name = ''
        self._token: Optional[CancellationToken] = None
        self._browser: Optional[BrowserManager] = None
        self._task: Optional[asyncio.Task] = None
        self._last_event: Optional[ProgressEvent] = None
        self._message = ''

        self.bus.add_observer(self._track)

    def _default_browser(self) -> BrowserManager:
        return BrowserManager(headless=self.settings.headless,
                              executable_path=self.settings.chrome_path,
                              close_grace=self.timings.close_grace)

    # Task bookkeeping

    def _acquire(self, name: str):
        with self._lock:
            if self._running:
                return None
            self._running = True
            self._task_name = name
            self._token = CancellationToken()
            self._browser = self.browser_factory()
            self._message = ''
            return self._token, self._browser

    def _release(self):
        with self._lock:
            self._running = False
            self._task_name = ''
            self._token = None
            self._browser = None
            self._task = None

    def _controller(self, browser: BrowserManager) -> QuizSessionController:
        return self.controller_factory(self.config, browser, reporter=self.reporter, timings=self.timings)

    def _track(self, event: ProgressEvent):
        with self._lock:
            self._last_event = event
            self._message = event.message

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    # Operations

    def start(self, quiz_urls: Optional[List[str]] = None) -> bool:
        """Schedule a run on the current loop; False when another task is active."""
        acquired = self._acquire('run')
        if acquired is None:
            logger.warning("Start rejected: a task is already running")
            return False
        token, browser = acquired
        solver = QuizSolver(self.config, self._controller(browser), self.reporter, self.timings)
        task = asyncio.get_running_loop().create_task(self._run(solver, token, quiz_urls))
        with self._lock:
            self._task = task
        return True

    async def _run(self, solver: QuizSolver, token: CancellationToken, quiz_urls: Optional[List[str]]):
        try:
            await solver.solve(token, quiz_urls)
        except QuizSolverError as e:
            logger.error(f"Run aborted: {e}")
        except Exception as e:
            logger.exception("Unexpected run failure")
            self.reporter.emit(EventKind.ERROR, f"运行出错: {e}")
        finally:
            self._release()

    async def stop(self) -> bool:
        """Cancel the active task and tear its browser down."""
        with self._lock:
            token, browser = self._token, self._browser
        if token is None:
            return False
        token.cancel()
        if browser is not None:
            await browser.close()
        self.reporter.log("任务已停止")
        return True

    async def fetch_quizzes(self) -> List[QuizDescriptor]:
        """Browser discovery; the result replaces the cached quiz list."""
        acquired = self._acquire('fetch')
        if acquired is None:
            raise ServiceBusy("有任务正在运行中")
        token, browser = acquired
        controller = self._controller(browser)
        self.reporter.log("正在启动浏览器获取题库列表...")
        try:
            await controller.launch()
            await controller.login(token)
            quizzes = await controller.fetch_quizzes(token)
        except CancelledByUser:
            self.reporter.log("获取题库已取消")
            return []
        except QuizSolverError as e:
            self.reporter.emit(EventKind.ERROR, f"获取题库失败: {e}")
            raise
        finally:
            await controller.close()
            self._release()

        self.config.save_cached_quizzes(quizzes)
        self.reporter.log(f"找到 {len(quizzes)} 个题库")
        return quizzes

    async def login(self) -> bool:
        """Refresh the stored session cookie."""
        acquired = self._acquire('login')
        if acquired is None:
            raise ServiceBusy("有任务正在运行中")
        token, browser = acquired
        controller = self._controller(browser)
        self.reporter.log("正在启动浏览器登录...")
        try:
            await controller.launch()
            await controller.login(token)
        except CancelledByUser:
            return False
        except QuizSolverError as e:
            self.reporter.emit(EventKind.ERROR, str(e))
            return False
        finally:
            await controller.close()
            self._release()
        self.reporter.emit(EventKind.COMPLETE, "登录成功，Cookie已更新")
        return True

    # Listeners

    def subscribe(self) -> asyncio.Queue:
        return self.bus.subscribe()

    def unsubscribe(self, queue: asyncio.Queue):
        self.bus.unsubscribe(queue)

    def status(self) -> Dict[str, Any]:
        with self._lock:
            event = self._last_event
            status = {
                'running': self._running,
                'currentTask': self._task_name,
                'message': self._message,
                'progress': 0,
                'total': 0,
            }
        if event is not None and status['running']:
            status['progress'] = event.current_index
            status['total'] = event.total_count
        return status
