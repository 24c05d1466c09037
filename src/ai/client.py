"""
OpenAI-backed language model collaborator for guard rules
"""
import json
import logging
import os
from typing import Any, Dict, Optional

from openai import APITimeoutError, OpenAI, OpenAIError
from pydantic import ValidationError

from src.guard.errors import AiEvaluationError, GenerationError
from src.guard.schema import AiVerdict

from .prompts import EVALUATE_SYSTEM_PROMPT, GENERATE_PROMPT, GENERATE_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

DEFAULT_MODEL = 'gpt-4o-mini'
DEFAULT_TIMEOUT = 10.0


def normalize_model_name(model: str) -> str:
    """Strip an 'openai/' prefix, kept for older configs"""
    return model[len('openai/'):] if model.startswith('openai/') else model


def get_model_name(override: Optional[str] = None) -> str:
    return normalize_model_name(override or os.getenv('GUARD_AI_MODEL', DEFAULT_MODEL))


def get_timeout() -> float:
    try:
        return float(os.getenv('GUARD_AI_TIMEOUT', DEFAULT_TIMEOUT))
    except ValueError:
        logger.warning(f"Invalid GUARD_AI_TIMEOUT, using {DEFAULT_TIMEOUT}s")
        return DEFAULT_TIMEOUT


class OpenAIGuardClient:
    """Single-attempt, time-bounded chat completion calls returning JSON"""

    def __init__(self, client: Optional[OpenAI] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None):
        self._client = client
        self.model = get_model_name(model)
        self.timeout = timeout if timeout is not None else get_timeout()

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(
                api_key=os.getenv('OPENAI_API_KEY'),
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def _complete_json(self, system: str, user: str, temperature: float) -> Dict[str, Any]:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {'role': 'system', 'content': system},
                {'role': 'user', 'content': user},
            ],
            response_format={'type': 'json_object'},
            temperature=temperature,
        )
        content = response.choices[0].message.content or ''
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        return data

    def evaluate_prompt(self, prompt: str, email_summary: Dict[str, Any]) -> AiVerdict:
        user = (
            f"Rule:\n{prompt}\n\n"
            f"Email:\n{json.dumps(email_summary, indent=2, ensure_ascii=False, default=str)}"
        )
        try:
            data = self._complete_json(EVALUATE_SYSTEM_PROMPT, user, temperature=0)
            return AiVerdict.model_validate(data)
        except APITimeoutError:
            raise AiEvaluationError(f"AI evaluation timed out after {self.timeout}s")
        except OpenAIError as e:
            raise AiEvaluationError(f"AI evaluation request failed: {e}")
        except (ValueError, ValidationError) as e:
            raise AiEvaluationError(f"AI evaluation returned unparsable output: {e}")

    def generate_config(self, description: str) -> Dict[str, Any]:
        try:
            return self._complete_json(
                GENERATE_SYSTEM_PROMPT,
                GENERATE_PROMPT.format(description=description),
                temperature=0.2,
            )
        except APITimeoutError:
            raise GenerationError(f"Rule generation timed out after {self.timeout}s")
        except OpenAIError as e:
            raise GenerationError(f"Rule generation request failed: {e}")
        except ValueError as e:
            raise GenerationError(f"Rule generation returned unparsable output: {e}")
