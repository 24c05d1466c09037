"""
Guard service: the entry points used by the mail pipeline, the admin checks
and rule authoring
"""
import logging
import threading
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from .actions import ActionResolver
from .ai_evaluator import AiCollaborator, AiEvaluator
from .engine import GuardEngine
from .errors import EmailNotFoundError, RuleNotFoundError
from .generator import RuleGenerator
from .schema import (
    CheckResult,
    CreateRuleRequest,
    EvaluationResult,
    GenerationResult,
    GuardRule,
    RulePage,
    RulesConfig,
    StructuredEmail,
    UpdateRuleRequest,
    parse_action,
    validation_error,
)
from .store import EmailStore, EndpointStore, RuleStore

logger = logging.getLogger(__name__)

EmailInput = Union[str, StructuredEmail, Dict[str, Any]]


class GuardService:
    """Wires the stores, the engine and the AI collaborator for one user"""

    def __init__(self, db: Session, user_id: str, ai_client: Optional[AiCollaborator] = None):
        self.db = db
        self.user_id = user_id
        self.rules = RuleStore(db, user_id)
        self.endpoints = EndpointStore(db, user_id)
        self.emails = EmailStore(db, user_id)
        self.action_resolver = ActionResolver(self.endpoints)
        self.engine = GuardEngine(
            self.action_resolver,
            AiEvaluator(ai_client) if ai_client is not None else None,
        )
        self.generator = RuleGenerator(ai_client) if ai_client is not None else None

    def _load_email(self, email: EmailInput) -> StructuredEmail:
        if isinstance(email, StructuredEmail):
            return email
        if isinstance(email, dict):
            try:
                return StructuredEmail.model_validate(email)
            except ValidationError as e:
                raise validation_error(e, 'email')
        stored = self.emails.get_email(email)
        if stored is None:
            raise EmailNotFoundError(email)
        return stored

    def evaluate_email(
        self,
        email: EmailInput,
        cancel_event: Optional[threading.Event] = None,
    ) -> EvaluationResult:
        """
        Real evaluation path. Records the match on the winning rule and, for
        stored emails, writes the disposition onto the email record.
        """
        stored = isinstance(email, str)
        structured = self._load_email(email)

        rules = self.rules.list_active()
        result = self.engine.evaluate(rules, structured, cancel_event=cancel_event)

        if result.matched:
            try:
                self.rules.record_match(result.rule_id)
            except RuleNotFoundError:
                # Deleted between the snapshot and now
                logger.warning(f"Matched rule {result.rule_id} no longer exists, trigger not recorded")

        if stored:
            self.emails.record_disposition(structured.id, result)
        return result

    def check_rule(self, rule_id: str, email: EmailInput) -> CheckResult:
        """Run one rule against one email without touching any stats"""
        rule = self.rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        structured = self._load_email(email)

        matched, details, reason, error = self.engine.evaluate_rule(rule, structured)
        return CheckResult(
            matched=matched,
            match_details=details if matched else None,
            reason=reason,
            error=error,
        )

    def create_rule(self, request: Union[CreateRuleRequest, Dict[str, Any]]) -> GuardRule:
        if isinstance(request, dict):
            try:
                request = CreateRuleRequest.model_validate(request)
            except ValidationError as e:
                raise validation_error(e, 'rule')
        self.action_resolver.validate(parse_action(request.action))
        return self.rules.create(request)

    def update_rule(self, rule_id: str, request: Union[UpdateRuleRequest, Dict[str, Any]]) -> GuardRule:
        if isinstance(request, dict):
            try:
                request = UpdateRuleRequest.model_validate(request)
            except ValidationError as e:
                raise validation_error(e, 'rule update')
        if not self.rules.exists(rule_id):
            raise RuleNotFoundError(rule_id)
        if 'action' in request.model_fields_set:
            self.action_resolver.validate(parse_action(request.action))
        return self.rules.update(rule_id, request)

    def delete_rule(self, rule_id: str) -> None:
        self.rules.delete(rule_id)

    def get_rule(self, rule_id: str) -> GuardRule:
        rule = self.rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    def list_rules(self, **filters) -> RulePage:
        return self.rules.list_rules(**filters)

    def generate_rule(self, description: str) -> GenerationResult:
        """Draft an explicit config; the caller reviews it before saving"""
        if self.generator is None:
            return GenerationResult(error='AI rule generation is not configured')
        return self.generator.generate(description)

    def sync_rules(self, rules_config: RulesConfig) -> int:
        """Upsert rules from a rules file, matching existing rules by name"""
        count = 0
        for definition in rules_config.rules:
            current = self.rules.get_by_name(definition.name)
            if current is not None and current.type == definition.type:
                self.update_rule(current.id, UpdateRuleRequest(
                    description=definition.description,
                    config=definition.config,
                    priority=definition.priority,
                    action=definition.action,
                    is_active=definition.is_active,
                ))
            else:
                self.create_rule(definition)
            count += 1
        logger.info(f"Synced {count} guard rules")
        return count
