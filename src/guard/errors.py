"""
Error taxonomy for the guard rule engine
"""
from typing import List, Optional


class GuardError(Exception):
    """Base class for all guard errors"""


class ConfigValidationError(GuardError):
    """Rule config, action or request failed schema validation"""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class ActionResolutionError(GuardError):
    """A route action references a missing or inactive endpoint"""

    def __init__(self, message: str, endpoint_id: Optional[str] = None):
        super().__init__(message)
        self.endpoint_id = endpoint_id


class AiEvaluationError(GuardError):
    """The language model call failed, timed out or returned garbage"""


class GenerationError(GuardError):
    """Rule generation failed or produced an invalid config"""


class RuleNotFoundError(GuardError):
    """No rule with the given id exists for the current user"""

    def __init__(self, rule_id: str):
        super().__init__(f"Guard rule not found: {rule_id}")
        self.rule_id = rule_id


class EmailNotFoundError(GuardError):
    """No structured email with the given id exists for the current user"""

    def __init__(self, email_id: str):
        super().__init__(f"Email not found: {email_id}")
        self.email_id = email_id


class EvaluationCancelledError(GuardError):
    """The caller cancelled evaluation before a decision was reached"""
