"""Exceptions raised by the quiz solving pipeline."""


class QuizSolverError(Exception):
    """Base exception for quiz solver errors."""

    pass


class LaunchFailure(QuizSolverError):
    """The browser process could not be started. Fatal to the run."""

    pass


class AuthFailure(QuizSolverError):
    """Logging in to the platform failed. Fatal to the run."""

    pass


class NavigationFailure(QuizSolverError):
    """A quiz page could not be loaded or never rendered its questions."""

    pass


class ExtractionFailure(QuizSolverError):
    """A question extraction strategy could not run."""

    pass


class ResolutionFailure(QuizSolverError):
    """No model profile produced an answer."""

    pass


class InjectionMismatch(QuizSolverError):
    """Answers could not be written into the page."""

    pass


class SubmissionUncertain(QuizSolverError):
    """The submit / confirm click sequence did not run."""

    pass


class CancelledByUser(QuizSolverError):
    """The run was stopped by the user."""

    pass


class ServiceBusy(QuizSolverError):
    """Another task already occupies the browser."""

    pass


class ConfigError(QuizSolverError):
    """The configuration file could not be read or written."""

    pass
