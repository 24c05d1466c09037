"""
AI prompt rule evaluation through an injected language model collaborator
"""
import logging
from typing import Any, Dict, Protocol

from .errors import AiEvaluationError
from .schema import AiMatchResult, AiVerdict, StructuredEmail, summarize_email

logger = logging.getLogger(__name__)


class AiCollaborator(Protocol):
    """What the guard needs from a language model"""

    def evaluate_prompt(self, prompt: str, email_summary: Dict[str, Any]) -> AiVerdict:
        ...

    def generate_config(self, description: str) -> Dict[str, Any]:
        ...


class AiEvaluator:
    """Evaluates ai_prompt rules. Never raises; failures become non-matches."""

    def __init__(self, collaborator: AiCollaborator, max_body_chars: int = 4000):
        self.collaborator = collaborator
        self.max_body_chars = max_body_chars

    def match(self, prompt: str, email: StructuredEmail) -> AiMatchResult:
        summary = summarize_email(email, self.max_body_chars)
        try:
            verdict = self.collaborator.evaluate_prompt(prompt, summary)
        except AiEvaluationError as e:
            logger.warning(f"AI evaluation failed: {e}")
            return AiMatchResult(matched=False, error=str(e))
        except Exception as e:
            logger.error(f"Unexpected error from AI collaborator: {e}", exc_info=True)
            return AiMatchResult(matched=False, error=f"AI evaluation failed: {e}")

        if not isinstance(verdict, AiVerdict):
            logger.warning(f"AI collaborator returned {type(verdict).__name__}, expected a verdict")
            return AiMatchResult(matched=False, error='AI evaluation returned an invalid response')

        logger.debug(f"AI verdict: matched={verdict.matched} reason={verdict.reason!r}")
        return AiMatchResult(matched=verdict.matched, reason=verdict.reason)
