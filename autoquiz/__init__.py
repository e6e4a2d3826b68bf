"""
Quiz Solver Module
Contains all components of the Mosoteach quiz auto-solver.
"""

from .browser import BrowserManager
from .parser import PageParser, SentinelPhrases
from .extractor import QuestionExtractor
from .resolver import AnswerResolver
from .injector import AnswerInjector, QuizSubmitter
from .api_utils import APIClient, ChatModelClient, ModelManager
from .cancellation import CancellationToken
from .config import ConfigStore, Settings, Timings
from .events import EventBus, EventKind, ProgressEvent
from .listing import QuizLister
from .session import QuizOutcome, QuizSessionController
from .solver_core import QuizSolver, RunOutcome
from .service import SolverService

__version__ = "1.0.0"

__all__ = [
    'BrowserManager',
    'PageParser',
    'SentinelPhrases',
    'QuestionExtractor',
    'AnswerResolver',
    'AnswerInjector',
    'QuizSubmitter',
    'APIClient',
    'ChatModelClient',
    'ModelManager',
    'CancellationToken',
    'ConfigStore',
    'Settings',
    'Timings',
    'EventBus',
    'EventKind',
    'ProgressEvent',
    'QuizLister',
    'QuizOutcome',
    'QuizSessionController',
    'QuizSolver',
    'RunOutcome',
    'SolverService',
]
