"""
Guard engine: ranks active rules and picks the first one that matches
"""
import logging
import threading
from typing import Iterable, List, Optional

from .actions import ActionResolver
from .ai_evaluator import AiEvaluator
from .errors import ActionResolutionError, EvaluationCancelledError
from .matcher import match_explicit
from .schema import (
    AiPromptRuleConfig,
    EvaluationResult,
    ExplicitRuleConfig,
    GuardRule,
    MatchDetail,
    StructuredEmail,
)

logger = logging.getLogger(__name__)


def rank_rules(rules: Iterable[GuardRule]) -> List[GuardRule]:
    """
    Evaluation order: priority high to low, then newest to oldest,
    then id so that equal rules always come out the same way.
    """
    active = [rule for rule in rules if rule.is_active]
    active.sort(key=lambda rule: rule.id)
    active.sort(key=lambda rule: (rule.priority, rule.created_at), reverse=True)
    return active


class GuardEngine:
    """Evaluates an email against a snapshot of rules. Does not write anything."""

    def __init__(self, action_resolver: ActionResolver, ai_evaluator: Optional[AiEvaluator] = None):
        self.action_resolver = action_resolver
        self.ai_evaluator = ai_evaluator

    def evaluate(
        self,
        rules: Iterable[GuardRule],
        email: StructuredEmail,
        cancel_event: Optional[threading.Event] = None,
    ) -> EvaluationResult:
        ranked = rank_rules(rules)
        errors: List[str] = []
        evaluated = 0

        logger.info(f"Evaluating email {email.id or '<inline>'} against {len(ranked)} active rules")

        for rule in ranked:
            if cancel_event is not None and cancel_event.is_set():
                raise EvaluationCancelledError(
                    f"Evaluation cancelled after {evaluated} of {len(ranked)} rules"
                )

            evaluated += 1
            try:
                matched, details, reason, error = self.evaluate_rule(rule, email)
            except Exception as e:
                logger.error(f"Error evaluating rule {rule.id}: {e}", exc_info=True)
                matched, details, reason, error = False, [], None, str(e)
            if error:
                errors.append(f"{rule.id}: {error}")
            if not matched:
                logger.debug(f"Rule {rule.name} did not match")
                continue

            logger.info(f"Rule {rule.name} ({rule.id}) matched, priority {rule.priority}")
            result = EvaluationResult(
                matched=True,
                rule_id=rule.id,
                rule_name=rule.name,
                reason=reason,
                match_details=details,
                errors=errors,
                rules_evaluated=evaluated,
            )
            try:
                result.action = self.action_resolver.resolve(rule.action)
            except ActionResolutionError as e:
                logger.error(f"Could not resolve action of rule {rule.id}: {e}")
                result.error = str(e)
                result.resolution_failed = True
            return result

        logger.info('No guard rule matched')
        return EvaluationResult(matched=False, errors=errors, rules_evaluated=evaluated)

    def evaluate_rule(self, rule: GuardRule, email: StructuredEmail):
        """Returns (matched, match_details, reason, error) for one rule"""
        config = rule.config
        if isinstance(config, ExplicitRuleConfig):
            result = match_explicit(config, email)
            reason = None
            if result.matched:
                criteria = ', '.join(d.criteria for d in result.match_details)
                reason = f"Matched rule '{rule.name}' on {criteria}"
            return result.matched, result.match_details, reason, None

        if isinstance(config, AiPromptRuleConfig):
            if self.ai_evaluator is None:
                return False, [], None, 'AI evaluation is not configured'
            result = self.ai_evaluator.match(config.prompt, email)
            details = [MatchDetail(criteria='aiPrompt', value=result.reason or 'Matched prompt')] if result.matched else []
            return result.matched, details, result.reason, result.error

        return False, [], None, f"Unknown rule config {type(config).__name__}"
