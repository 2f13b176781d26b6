"""Exception types raised across the classification flow."""

from __future__ import annotations


class ClassificationCancelled(Exception):
    """The session was interrupted.  Always propagated, never retried."""

    def __init__(self, message: str = "classification cancelled") -> None:
        super().__init__(message)


class InputTerminated(Exception):
    """End of input was reached while a prompt was waiting for an answer."""

    def __init__(self, message: str = "input ended before a choice was made") -> None:
        super().__init__(message)


class InvalidChoice(ValueError):
    """A prompt answer was not one of the offered options.

    Consumed by the prompt loop, which re-prompts.
    """


class RuleEvaluationError(ValueError):
    """A rule could not be evaluated, e.g. because its regex is malformed."""

    def __init__(self, rule_name: str, reason: str) -> None:
        super().__init__(f"rule {rule_name!r}: {reason}")
        self.rule_name = rule_name
        self.reason = reason


class ExternalServiceError(RuntimeError):
    """The AI classifier or direction inferrer failed."""
