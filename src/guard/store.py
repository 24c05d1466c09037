"""
Persistence for guard rules, endpoints and structured emails

Every consumer gets already-validated pydantic objects from here; the JSON
text columns are never parsed anywhere else.
"""
import json
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import or_
from sqlalchemy.orm import Session

from src.database.models import Endpoint as EndpointModel
from src.database.models import GuardRule as GuardRuleModel
from src.database.models import StructuredEmail as StructuredEmailModel
from src.database.models import new_id, utcnow

from .errors import ConfigValidationError, RuleNotFoundError
from .schema import (
    CreateRuleRequest,
    EndpointInfo,
    EvaluationResult,
    GuardRule,
    RulePage,
    StructuredEmail,
    UpdateRuleRequest,
    action_to_json,
    parse_action,
    parse_rule_config,
    validation_error,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

DISPOSITION_VERBS = {'allow': 'Allowed', 'block': 'Blocked', 'route': 'Routed'}


class RuleStore:
    """CRUD for one user's guard rules"""

    def __init__(self, db: Session, user_id: str):
        self.db = db
        self.user_id = user_id

    def _query(self):
        return self.db.query(GuardRuleModel).filter(GuardRuleModel.user_id == self.user_id)

    def _row(self, rule_id: str) -> Optional[GuardRuleModel]:
        return self._query().filter(GuardRuleModel.id == rule_id).first()

    @staticmethod
    def to_rule(row: GuardRuleModel) -> GuardRule:
        """Parse a database row into a typed rule, raising ConfigValidationError if it is corrupt"""
        config = parse_rule_config(row.type, row.config)
        action = parse_action(row.actions)
        try:
            return GuardRule(
                id=row.id,
                user_id=row.user_id,
                name=row.name,
                description=row.description,
                type=row.type,
                config=config,
                action=action,
                priority=row.priority or 0,
                is_active=bool(row.is_active),
                trigger_count=row.trigger_count or 0,
                last_triggered_at=row.last_triggered_at,
                created_at=row.created_at,
                updated_at=row.updated_at,
            )
        except ValidationError as e:
            raise validation_error(e, f"stored rule {row.id}")

    def _to_rules(self, rows: List[GuardRuleModel]) -> List[GuardRule]:
        rules = []
        for row in rows:
            try:
                rules.append(self.to_rule(row))
            except ConfigValidationError as e:
                logger.error(f"Skipping unreadable rule {row.id} ({row.name}): {e}")
        return rules

    def list_active(self) -> List[GuardRule]:
        """Snapshot of active rules, in no particular order"""
        rows = self._query().filter(GuardRuleModel.is_active == True).all()
        return self._to_rules(rows)

    def list_rules(
        self,
        search: Optional[str] = None,
        rule_type: Optional[str] = None,
        is_active: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> RulePage:
        """List rules with filters, newest highest-priority first"""
        limit = min(max(limit if limit is not None else DEFAULT_PAGE_SIZE, 1), MAX_PAGE_SIZE)
        offset = max(offset or 0, 0)

        query = self._query()
        if rule_type:
            query = query.filter(GuardRuleModel.type == rule_type)
        if is_active is not None:
            query = query.filter(GuardRuleModel.is_active == is_active)
        search = search.strip() if search else None
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                GuardRuleModel.name.ilike(pattern),
                GuardRuleModel.description.ilike(pattern),
            ))

        total = query.count()
        rows = (
            query.order_by(GuardRuleModel.priority.desc(), GuardRuleModel.created_at.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )
        logger.debug(f"Found {len(rows)} rules (total: {total})")
        return RulePage(
            rules=self._to_rules(rows),
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(rows) < total,
        )

    def get(self, rule_id: str) -> Optional[GuardRule]:
        row = self._row(rule_id)
        return self.to_rule(row) if row else None

    def exists(self, rule_id: str) -> bool:
        return self._row(rule_id) is not None

    def get_by_name(self, name: str) -> Optional[GuardRule]:
        row = self._query().filter(GuardRuleModel.name == name).order_by(GuardRuleModel.created_at).first()
        return self.to_rule(row) if row else None

    def create(self, request: CreateRuleRequest) -> GuardRule:
        """Validate and insert a new rule"""
        config = parse_rule_config(request.type, request.config)
        action = parse_action(request.action)
        now = utcnow()

        row = GuardRuleModel(
            id=new_id(),
            user_id=self.user_id,
            name=request.name,
            description=(request.description or '').strip() or None,
            type=request.type,
            config=config.to_json(),
            actions=action_to_json(action),
            is_active=request.is_active,
            priority=request.priority,
            trigger_count=0,
            created_at=now,
            updated_at=now,
        )
        self.db.add(row)
        self.db.commit()
        logger.info(f"Guard rule created: {row.id} ({row.name})")
        return self.to_rule(row)

    def update(self, rule_id: str, request: UpdateRuleRequest) -> GuardRule:
        """Apply a partial update; only fields set on the request are written"""
        row = self._row(rule_id)
        if not row:
            raise RuleNotFoundError(rule_id)

        fields = request.model_fields_set
        if 'config' in fields:
            row.config = parse_rule_config(row.type, request.config).to_json()
        if 'action' in fields:
            row.actions = action_to_json(parse_action(request.action))
        if 'name' in fields and request.name is not None:
            row.name = request.name
        if 'description' in fields:
            row.description = (request.description or '').strip() or None
        if 'priority' in fields and request.priority is not None:
            row.priority = request.priority
        if 'is_active' in fields and request.is_active is not None:
            row.is_active = request.is_active
        row.updated_at = utcnow()

        self.db.commit()
        logger.info(f"Guard rule updated: {rule_id} (fields: {sorted(fields)})")
        return self.to_rule(row)

    def delete(self, rule_id: str) -> None:
        row = self._row(rule_id)
        if not row:
            raise RuleNotFoundError(rule_id)
        self.db.delete(row)
        self.db.commit()
        logger.info(f"Guard rule deleted: {rule_id}")

    def record_match(self, rule_id: str, when: Optional[datetime] = None) -> None:
        """Bump trigger stats with a single UPDATE so concurrent matches are not lost"""
        updated = (
            self._query()
            .filter(GuardRuleModel.id == rule_id)
            .update(
                {
                    GuardRuleModel.trigger_count: GuardRuleModel.trigger_count + 1,
                    GuardRuleModel.last_triggered_at: when or utcnow(),
                },
                synchronize_session=False,
            )
        )
        if not updated:
            self.db.rollback()
            raise RuleNotFoundError(rule_id)
        self.db.commit()
        logger.debug(f"Recorded match for rule {rule_id}")


class EndpointStore:
    """Read access to the user's delivery endpoints"""

    def __init__(self, db: Session, user_id: str):
        self.db = db
        self.user_id = user_id

    def get_endpoint(self, endpoint_id: str) -> Optional[EndpointInfo]:
        row = self.db.query(EndpointModel).filter(
            EndpointModel.id == endpoint_id,
            EndpointModel.user_id == self.user_id,
        ).first()
        if not row:
            return None
        return EndpointInfo(id=row.id, name=row.name, type=row.type, is_active=bool(row.is_active))

    def create_endpoint(self, name: str, endpoint_type: str, is_active: bool = True) -> EndpointInfo:
        row = EndpointModel(
            id=new_id(),
            user_id=self.user_id,
            name=name,
            type=endpoint_type,
            is_active=is_active,
        )
        self.db.add(row)
        self.db.commit()
        return EndpointInfo(id=row.id, name=row.name, type=row.type, is_active=row.is_active)


class EmailStore:
    """Structured emails and the guard disposition recorded on them"""

    def __init__(self, db: Session, user_id: str):
        self.db = db
        self.user_id = user_id

    def _row(self, email_id: str) -> Optional[StructuredEmailModel]:
        return self.db.query(StructuredEmailModel).filter(
            StructuredEmailModel.id == email_id,
            StructuredEmailModel.user_id == self.user_id,
        ).first()

    def get_email(self, email_id: str) -> Optional[StructuredEmail]:
        row = self._row(email_id)
        if not row:
            return None

        try:
            from_data = json.loads(row.from_data) if row.from_data else []
            to_data = json.loads(row.to_data) if row.to_data else []
            attachments = json.loads(row.attachments) if row.attachments else []
        except ValueError as e:
            raise ConfigValidationError(f"Stored email {row.id} has invalid JSON: {e}")

        try:
            return StructuredEmail(
                id=row.id,
                user_id=row.user_id,
                from_addresses=from_data,
                to_addresses=to_data,
                subject=row.subject,
                text_body=row.text_body,
                html_body=row.html_body,
                attachments=attachments if isinstance(attachments, list) else [],
                received_at=row.received_at,
            )
        except ValidationError as e:
            raise validation_error(e, f"stored email {row.id}")

    def add_email(self, email: StructuredEmail) -> str:
        """Store a parsed email and return its id"""
        row = StructuredEmailModel(
            id=email.id or new_id(),
            user_id=self.user_id,
            from_data=json.dumps({'addresses': [{'address': a} for a in email.from_addresses]}),
            to_data=json.dumps({'addresses': [{'address': a} for a in email.to_addresses]}),
            subject=email.subject,
            text_body=email.text_body,
            html_body=email.html_body,
            attachments=json.dumps([a.model_dump(by_alias=True) for a in email.attachments]),
            received_at=email.received_at,
        )
        self.db.add(row)
        self.db.commit()
        return row.id

    def record_disposition(self, email_id: str, result: EvaluationResult) -> None:
        """Write the guard outcome onto the stored email"""
        row = self._row(email_id)
        if not row:
            logger.warning(f"Cannot record guard result, email {email_id} not found")
            return

        action = result.action
        row.guard_blocked = bool(action and action.should_block)
        row.guard_action = action.disposition if action else None
        row.guard_rule_id = result.rule_id
        if result.reason:
            row.guard_reason = result.reason
        elif result.rule_name and action:
            row.guard_reason = f"{DISPOSITION_VERBS[action.disposition]} by rule: {result.rule_name}"
        else:
            row.guard_reason = result.error
        row.guard_metadata = json.dumps({
            'matchDetails': [d.model_dump() for d in result.match_details],
            'endpointId': action.endpoint_id if action else None,
            'errors': result.errors,
            'resolutionFailed': result.resolution_failed,
        })
        self.db.commit()
        logger.info(f"Recorded guard disposition for email {email_id}: {row.guard_action}")
