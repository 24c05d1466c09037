"""
Matching of explicit rule configs against structured emails
"""
import logging
from typing import List

from .schema import Criterion, ExplicitRuleConfig, MatchDetail, MatchResult, StructuredEmail

logger = logging.getLogger(__name__)


def match_explicit(config: ExplicitRuleConfig, email: StructuredEmail) -> MatchResult:
    """Evaluate an explicit config. Every populated criterion must match."""
    match_details: List[MatchDetail] = []
    all_criteria_match = True

    if config.subject is not None:
        subject = (email.subject or '').lower()
        if check_string_criteria(subject, config.subject):
            match_details.append(MatchDetail(
                criteria='subject',
                value=f"Matched with {config.subject.operator} logic",
            ))
        else:
            all_criteria_match = False

    if config.from_ is not None:
        addresses = [address.lower() for address in email.from_addresses]
        if check_sender_criteria(addresses, config.from_):
            match_details.append(MatchDetail(
                criteria='from',
                value=f"Matched with {config.from_.operator} logic",
            ))
        else:
            all_criteria_match = False

    if config.has_attachment is not None:
        has_attachments = email.has_attachments
        if has_attachments == config.has_attachment:
            match_details.append(MatchDetail(
                criteria='hasAttachment',
                value=f"Email {'has' if has_attachments else 'does not have'} attachments",
            ))
        else:
            all_criteria_match = False

    if config.has_words is not None:
        # Searches both the text and the HTML body
        content = f"{(email.text_body or '').lower()} {(email.html_body or '').lower()}"
        if check_string_criteria(content, config.has_words):
            match_details.append(MatchDetail(
                criteria='hasWords',
                value=f"Matched with {config.has_words.operator} logic",
            ))
        else:
            all_criteria_match = False

    matched = all_criteria_match and len(match_details) > 0
    logger.debug(f"Explicit match -> {matched} ({[d.criteria for d in match_details]})")
    return MatchResult(matched=matched, match_details=match_details if matched else [])


def check_string_criteria(content: str, criterion: Criterion) -> bool:
    """Case-insensitive substring check; content must already be lowercase"""
    results = (value.lower() in content for value in criterion.values)
    if criterion.operator == 'OR':
        return any(results)
    return all(results)


def sender_matches(addresses: List[str], pattern: str) -> bool:
    """True if any lowercase sender address satisfies one pattern"""
    pattern = pattern.strip().lower()
    if pattern.startswith('*@'):
        domain = pattern[2:]
        return any(address.rpartition('@')[2] == domain for address in addresses if '@' in address)
    return any(address == pattern for address in addresses)


def check_sender_criteria(addresses: List[str], criterion: Criterion) -> bool:
    results = (sender_matches(addresses, pattern) for pattern in criterion.values)
    if criterion.operator == 'OR':
        return any(results)
    return all(results)
