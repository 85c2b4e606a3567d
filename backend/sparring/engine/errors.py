class ScoringError(Exception):
    """Base class for every error raised by the match engine."""


class InvalidTransition(ScoringError):
    pass


class NotAssigned(ScoringError):
    pass


class WindowClosed(ScoringError):
    pass


class ValidationError(ScoringError, ValueError):
    pass


class InvalidScoreValue(ValidationError):
    pass


class NotFound(ScoringError, LookupError):
    pass
