"""
Guard rule engine: decides whether inbound email is allowed, blocked or rerouted
"""
from .actions import ActionResolver
from .ai_evaluator import AiCollaborator, AiEvaluator
from .engine import GuardEngine, rank_rules
from .errors import (
    ActionResolutionError,
    AiEvaluationError,
    ConfigValidationError,
    EmailNotFoundError,
    EvaluationCancelledError,
    GenerationError,
    GuardError,
    RuleNotFoundError,
)
from .generator import RuleGenerator
from .matcher import match_explicit
from .schema import (
    AiPromptRuleConfig,
    CheckResult,
    CreateRuleRequest,
    EvaluationResult,
    ExplicitRuleConfig,
    GuardRule,
    RulesConfig,
    StructuredEmail,
    UpdateRuleRequest,
)
from .service import GuardService
from .store import EmailStore, EndpointStore, RuleStore

__all__ = [
    'ActionResolver',
    'AiCollaborator',
    'AiEvaluator',
    'GuardEngine',
    'rank_rules',
    'RuleGenerator',
    'match_explicit',
    'GuardService',
    'RuleStore',
    'EndpointStore',
    'EmailStore',
    'GuardRule',
    'ExplicitRuleConfig',
    'AiPromptRuleConfig',
    'StructuredEmail',
    'CreateRuleRequest',
    'UpdateRuleRequest',
    'RulesConfig',
    'EvaluationResult',
    'CheckResult',
    'GuardError',
    'ConfigValidationError',
    'ActionResolutionError',
    'AiEvaluationError',
    'GenerationError',
    'RuleNotFoundError',
    'EmailNotFoundError',
    'EvaluationCancelledError',
]
