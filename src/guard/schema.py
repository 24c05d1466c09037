"""
Typed schema for guard rules, inbound emails and evaluation results
"""
import json
from datetime import datetime, timezone
from email.utils import getaddresses, parseaddr
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from dateutil import parser as date_parser
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import ConfigValidationError

RuleType = Literal['explicit', 'ai_prompt']
LogicOperator = Literal['AND', 'OR']
RuleMode = Literal['simple', 'advanced']
Disposition = Literal['allow', 'block', 'route']


class Criterion(BaseModel):
    """A list of values combined with AND/OR"""
    model_config = ConfigDict(extra='forbid')

    operator: LogicOperator = 'OR'
    values: List[str] = Field(min_length=1)

    @field_validator('values')
    @classmethod
    def _values_not_blank(cls, values: List[str]) -> List[str]:
        # An empty value is a substring of every subject and body
        values = [value.strip() for value in values]
        if any(not value for value in values):
            raise ValueError('Criterion values must not be blank')
        return values


class ExplicitRuleConfig(BaseModel):
    """Field matchers for an explicit rule. Populated criteria are ANDed together."""
    model_config = ConfigDict(extra='forbid', populate_by_name=True)

    mode: RuleMode = 'advanced'
    subject: Optional[Criterion] = None
    from_: Optional[Criterion] = Field(default=None, alias='from')  # Supports *@domain.com
    has_attachment: Optional[bool] = Field(default=None, alias='hasAttachment')
    has_words: Optional[Criterion] = Field(default=None, alias='hasWords')

    @model_validator(mode='after')
    def _require_criteria(self):
        if not self.populated_criteria():
            raise ValueError(
                'Rule config must define at least one of subject, from, hasAttachment or hasWords'
            )
        return self

    def populated_criteria(self) -> List[str]:
        names = []
        if self.subject is not None:
            names.append('subject')
        if self.from_ is not None:
            names.append('from')
        if self.has_attachment is not None:
            names.append('hasAttachment')
        if self.has_words is not None:
            names.append('hasWords')
        return names

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class AiPromptRuleConfig(BaseModel):
    """Natural-language predicate judged by a language model"""
    model_config = ConfigDict(extra='forbid')

    mode: RuleMode = 'advanced'
    prompt: str

    @field_validator('prompt')
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError('AI prompt must not be empty')
        return value

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


RuleConfig = Union[ExplicitRuleConfig, AiPromptRuleConfig]

CONFIG_TYPES = {
    'explicit': ExplicitRuleConfig,
    'ai_prompt': AiPromptRuleConfig,
}


class AllowAction(BaseModel):
    action: Literal['allow'] = 'allow'


class BlockAction(BaseModel):
    action: Literal['block'] = 'block'


class RouteAction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: Literal['route'] = 'route'
    endpoint_id: str = Field(alias='endpointId', min_length=1)


ActionConfig = Annotated[
    Union[AllowAction, BlockAction, RouteAction],
    Field(discriminator='action'),
]

_action_adapter = TypeAdapter(ActionConfig)


def _error_messages(exc: ValidationError) -> List[str]:
    messages = []
    for error in exc.errors():
        location = '.'.join(str(part) for part in error['loc'])
        messages.append(f"{location}: {error['msg']}" if location else error['msg'])
    return messages


def _load_json(raw: Any, what: str) -> Any:
    if isinstance(raw, (str, bytes)):
        try:
            return json.loads(raw)
        except ValueError as e:
            raise ConfigValidationError(f"Invalid {what} JSON: {e}")
    return raw


def parse_rule_config(rule_type: str, raw: Any) -> RuleConfig:
    """Parse a stored or submitted config for the given rule type"""
    model = CONFIG_TYPES.get(rule_type)
    if model is None:
        raise ConfigValidationError(
            f"Invalid rule type '{rule_type}'. Must be 'explicit' or 'ai_prompt'"
        )
    if isinstance(raw, BaseModel):
        if not isinstance(raw, model):
            raise ConfigValidationError(f"Config does not match rule type '{rule_type}'")
        return raw
    data = _load_json(raw, 'config')
    if not isinstance(data, dict):
        raise ConfigValidationError('Rule config must be an object')
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = _error_messages(e)
        raise ConfigValidationError(f"Invalid {rule_type} rule config: {'; '.join(errors)}", errors)


def parse_action(raw: Any) -> ActionConfig:
    """Parse a stored or submitted action. A missing action means allow."""
    if raw is None or raw == '':
        return AllowAction()
    if isinstance(raw, (AllowAction, BlockAction, RouteAction)):
        return raw
    data = _load_json(raw, 'action')
    try:
        return _action_adapter.validate_python(data)
    except ValidationError as e:
        errors = _error_messages(e)
        raise ConfigValidationError(f"Invalid rule action: {'; '.join(errors)}", errors)


def action_to_json(action: ActionConfig) -> str:
    return action.model_dump_json(by_alias=True)


class GuardRule(BaseModel):
    """A fully parsed guard rule, as handed out by the rule store"""

    id: str
    user_id: str
    name: str
    description: Optional[str] = None
    type: RuleType
    config: RuleConfig
    action: ActionConfig = Field(default_factory=AllowAction)
    priority: int = Field(default=0, ge=0)
    is_active: bool = True
    trigger_count: int = 0
    last_triggered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator('created_at', 'updated_at', 'last_triggered_at')
    @classmethod
    def _naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Stored timestamps are naive UTC; ranking compares them directly
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    @model_validator(mode='after')
    def _config_matches_type(self):
        if not isinstance(self.config, CONFIG_TYPES[self.type]):
            raise ValueError(f"Config does not match rule type '{self.type}'")
        return self


class Attachment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: Optional[str] = None
    content_type: Optional[str] = Field(default=None, alias='contentType')
    size: Optional[int] = None


class StructuredEmail(BaseModel):
    """A parsed inbound email as produced by the upstream parser"""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias='userId')
    from_addresses: List[str] = Field(default_factory=list, alias='from')
    to_addresses: List[str] = Field(default_factory=list, alias='to')
    subject: Optional[str] = None
    text_body: Optional[str] = Field(default=None, alias='textBody')
    html_body: Optional[str] = Field(default=None, alias='htmlBody')
    attachments: List[Attachment] = Field(default_factory=list)
    received_at: Optional[datetime] = Field(default=None, alias='receivedAt')

    @field_validator('from_addresses', 'to_addresses', mode='before')
    @classmethod
    def _normalize_addresses(cls, value):
        if value is None:
            return []
        if isinstance(value, dict):
            # Parser output: {"text": "A <a@b.com>", "addresses": [{"address": ...}]}
            if 'addresses' in value:
                value = value['addresses'] or []
            else:
                value = value.get('text') or []
        if isinstance(value, str):
            return [address for _, address in getaddresses([value]) if address]
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"Expected an address string, list or mapping, got {type(value).__name__}")
        addresses = []
        for item in value:
            if isinstance(item, dict):
                address = item.get('address') or ''
            elif isinstance(item, str):
                address = parseaddr(item)[1] or item.strip()
            else:
                raise ValueError(f"Invalid address entry: {item!r}")
            if address:
                addresses.append(address.strip())
        return addresses

    @field_validator('received_at', mode='before')
    @classmethod
    def _parse_received_at(cls, value):
        # Accepts RFC 2822 Date headers as well as ISO 8601
        if isinstance(value, str) and value.strip():
            return date_parser.parse(value)
        return value or None

    @property
    def has_attachments(self) -> bool:
        return len(self.attachments) > 0


class MatchDetail(BaseModel):
    criteria: str
    value: str


class MatchResult(BaseModel):
    matched: bool
    match_details: List[MatchDetail] = Field(default_factory=list)


class AiVerdict(BaseModel):
    """What the language model said about one email"""
    matched: bool
    reason: Optional[str] = None


class AiMatchResult(BaseModel):
    matched: bool
    reason: Optional[str] = None
    error: Optional[str] = None


class EndpointInfo(BaseModel):
    id: str
    name: Optional[str] = None
    type: str
    is_active: bool


class ResolvedAction(BaseModel):
    """The disposition the mail pipeline should apply"""
    disposition: Disposition
    endpoint_id: Optional[str] = None
    endpoint_type: Optional[str] = None

    @property
    def should_block(self) -> bool:
        return self.disposition == 'block'


class EvaluationResult(BaseModel):
    matched: bool
    rule_id: Optional[str] = None
    rule_name: Optional[str] = None
    action: Optional[ResolvedAction] = None
    reason: Optional[str] = None
    match_details: List[MatchDetail] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    resolution_failed: bool = False
    rules_evaluated: int = 0


class CheckResult(BaseModel):
    matched: bool
    match_details: Optional[List[MatchDetail]] = None
    reason: Optional[str] = None
    error: Optional[str] = None


class GenerationResult(BaseModel):
    config: Optional[ExplicitRuleConfig] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.config is not None and self.error is None


def _strip_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError('Rule name is required')
    return value


class CreateRuleRequest(BaseModel):
    """Input for creating a rule. Config and action may be dicts or JSON text."""

    name: str
    description: Optional[str] = None
    type: RuleType
    config: Any
    priority: int = Field(default=0, ge=0)
    action: Any = None
    is_active: bool = True

    @field_validator('name')
    @classmethod
    def _check_name(cls, value):
        return _strip_name(value)


class UpdateRuleRequest(BaseModel):
    """Partial update. Only fields that are set are written."""

    name: Optional[str] = None
    description: Optional[str] = None
    config: Any = None
    is_active: Optional[bool] = None
    priority: Optional[int] = Field(default=None, ge=0)
    action: Any = None

    @field_validator('name')
    @classmethod
    def _check_name(cls, value):
        return _strip_name(value)


class RulePage(BaseModel):
    rules: List[GuardRule]
    total: int
    limit: int
    offset: int
    has_more: bool


class RulesConfig(BaseModel):
    """Schema for a rules file"""
    rules: List[CreateRuleRequest]


def validation_error(exc: ValidationError, what: str) -> ConfigValidationError:
    errors = _error_messages(exc)
    return ConfigValidationError(f"Invalid {what}: {'; '.join(errors)}", errors)


def summarize_email(email: StructuredEmail, max_body_chars: int = 4000) -> Dict[str, Any]:
    """Bounded view of an email for a language model"""
    body = email.text_body or email.html_body or ''
    return {
        'from': email.from_addresses,
        'to': email.to_addresses,
        'subject': email.subject or '',
        'attachments': [a.filename or 'unnamed' for a in email.attachments],
        'body': body[:max_body_chars],
    }
