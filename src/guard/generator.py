"""
Natural language to explicit rule config, used when authoring rules
"""
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .ai_evaluator import AiCollaborator
from .errors import GenerationError
from .schema import ExplicitRuleConfig, GenerationResult, validation_error

logger = logging.getLogger(__name__)

NO_CRITERIA_ERROR = 'Could not extract clear filtering criteria. Please be more specific.'

CRITERIA_KEYS = ('subject', 'from', 'hasWords')


def normalize_generated_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Trim values, drop blanks and lowercase. Anything structurally wrong is left
    alone for validation to reject.
    """
    config: Dict[str, Any] = {'mode': 'simple'}
    for key in CRITERIA_KEYS:
        criterion = raw.get(key)
        if criterion is None:
            continue
        if isinstance(criterion, dict) and isinstance(criterion.get('values'), list):
            values = [
                v.strip().lower() if isinstance(v, str) else v
                for v in criterion['values']
            ]
            values = [v for v in values if v != '']
            if not values:
                continue
            criterion = {**criterion, 'values': values}
        config[key] = criterion
    if raw.get('hasAttachment') is not None:
        config['hasAttachment'] = raw['hasAttachment']
    unknown = set(raw) - set(CRITERIA_KEYS) - {'hasAttachment', 'mode'}
    for key in unknown:
        config[key] = raw[key]
    return config


class RuleGenerator:
    """Asks the language model for a config and validates what comes back"""

    def __init__(self, collaborator: AiCollaborator):
        self.collaborator = collaborator

    def generate(self, description: str) -> GenerationResult:
        try:
            config = self.generate_config(description)
        except GenerationError as e:
            return GenerationResult(error=str(e))
        return GenerationResult(config=config)

    def generate_config(self, description: Optional[str]) -> ExplicitRuleConfig:
        """Like generate, but raises GenerationError"""
        if not description or not description.strip():
            raise GenerationError('Prompt is required')

        try:
            raw = self.collaborator.generate_config(description.strip())
        except Exception as e:
            logger.error(f"Rule generation call failed: {e}")
            raise GenerationError(f"Failed to generate rules: {e}")

        if not isinstance(raw, dict):
            raise GenerationError('Model returned a non-object rule config')

        config = normalize_generated_config(raw)
        if len(config) == 1:
            raise GenerationError(NO_CRITERIA_ERROR)

        try:
            return ExplicitRuleConfig.model_validate(config)
        except ValidationError as e:
            error = validation_error(e, 'generated rule config')
            logger.warning(f"Generated config rejected: {error}")
            raise GenerationError(str(error))
