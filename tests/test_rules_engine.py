"""
Test suite for the guard engine.

Test Coverage:

1. Ranking:
   - priority high to low
   - newest first on equal priority
   - id as the final tie-break
   - inactive rules dropped

2. Selection:
   - first match wins, later rules are never evaluated
   - no match returns no action
   - AI rule errors are isolated and evaluation continues
   - cancellation between rules

3. Action resolution:
   - allow / block / route
   - route to a missing or inactive endpoint
"""

import threading
import unittest
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.guard import engine as engine_module
from src.guard.actions import ActionResolver
from src.guard.ai_evaluator import AiEvaluator
from src.guard.engine import GuardEngine, rank_rules
from src.guard.errors import ActionResolutionError, AiEvaluationError, EvaluationCancelledError
from src.guard.schema import (
    AiPromptRuleConfig,
    AiVerdict,
    EndpointInfo,
    ExplicitRuleConfig,
    GuardRule,
    StructuredEmail,
    parse_action,
)

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


def make_rule(rule_id, priority=0, created_offset=0, config=None, action=None, is_active=True,
              rule_type='explicit'):
    if config is None:
        config = {'subject': {'operator': 'OR', 'values': ['invoice']}}
    if rule_type == 'explicit':
        config = ExplicitRuleConfig.model_validate(config)
    else:
        config = AiPromptRuleConfig.model_validate(config)
    return GuardRule(
        id=rule_id,
        user_id='user-1',
        name=f'Rule {rule_id}',
        type=rule_type,
        config=config,
        action=parse_action(action or {'action': 'block'}),
        priority=priority,
        is_active=is_active,
        created_at=BASE_TIME + timedelta(minutes=created_offset),
    )


class TestRanking(unittest.TestCase):

    def test_priority_then_newest(self):
        a = make_rule('a', priority=5, created_offset=0)
        b = make_rule('b', priority=5, created_offset=10)
        c = make_rule('c', priority=10, created_offset=-60)

        ranked = rank_rules([a, b, c])
        self.assertEqual([r.id for r in ranked], ['c', 'b', 'a'])

    def test_id_breaks_full_ties(self):
        rules = [make_rule(rule_id) for rule_id in ['z', 'm', 'a']]
        self.assertEqual([r.id for r in rank_rules(rules)], ['a', 'm', 'z'])
        self.assertEqual([r.id for r in rank_rules(reversed(rules))], ['a', 'm', 'z'])

    def test_inactive_rules_dropped(self):
        rules = [make_rule('on'), make_rule('off', priority=100, is_active=False)]
        self.assertEqual([r.id for r in rank_rules(rules)], ['on'])

    def test_timezone_aware_created_at(self):
        aware = GuardRule(
            id='aware',
            user_id='user-1',
            name='Imported rule',
            type='explicit',
            config=ExplicitRuleConfig(has_attachment=True),
            created_at='2024-01-02T00:00:00Z',
        )
        naive = make_rule('naive')

        self.assertIsNone(aware.created_at.tzinfo)
        self.assertEqual(aware.created_at, datetime(2024, 1, 2, 0, 0, 0))
        self.assertEqual([r.id for r in rank_rules([naive, aware])], ['aware', 'naive'])

    def test_order_is_non_increasing(self):
        rules = [
            make_rule(str(i), priority=i % 3, created_offset=(i * 7) % 5)
            for i in range(12)
        ]
        ranked = rank_rules(rules)
        for earlier, later in zip(ranked, ranked[1:]):
            self.assertGreaterEqual(earlier.priority, later.priority)
            if earlier.priority == later.priority:
                self.assertGreaterEqual(earlier.created_at, later.created_at)


class TestGuardEngine(unittest.TestCase):

    def setUp(self):
        self.endpoints = MagicMock()
        self.endpoints.get_endpoint.return_value = EndpointInfo(
            id='ep_1', name='Hook', type='webhook', is_active=True
        )
        self.collaborator = MagicMock()
        self.engine = GuardEngine(ActionResolver(self.endpoints), AiEvaluator(self.collaborator))
        self.email = StructuredEmail(
            id='email-1',
            from_addresses=['a@b.com'],
            subject='Your invoice #123',
            text_body='Please pay',
        )

    def test_invoice_scenario_blocks(self):
        rule = make_rule('r1', priority=10, action={'action': 'block'})
        result = self.engine.evaluate([rule], self.email)

        self.assertTrue(result.matched)
        self.assertEqual(result.rule_id, 'r1')
        self.assertEqual(result.action.disposition, 'block')
        self.assertTrue(result.action.should_block)

    def test_wildcard_route_scenario(self):
        rule = make_rule(
            'r1',
            config={'from': {'operator': 'OR', 'values': ['*@spam.com']}},
            action={'action': 'route', 'endpointId': 'ep_1'},
        )

        spam = self.email.model_copy(update={'from_addresses': ['user@spam.com']})
        result = self.engine.evaluate([rule], spam)
        self.assertTrue(result.matched)
        self.assertEqual(result.action.disposition, 'route')
        self.assertEqual(result.action.endpoint_id, 'ep_1')
        self.assertEqual(result.action.endpoint_type, 'webhook')

        legit = self.email.model_copy(update={'from_addresses': ['user@legit.com']})
        result = self.engine.evaluate([rule], legit)
        self.assertFalse(result.matched)
        self.assertIsNone(result.action)

    def test_first_match_wins(self):
        high = make_rule('high', priority=10, action={'action': 'allow'})
        low = make_rule('low', priority=5, action={'action': 'block'})

        with patch.object(engine_module, 'match_explicit', wraps=engine_module.match_explicit) as spy:
            result = self.engine.evaluate([low, high], self.email)

        self.assertEqual(result.rule_id, 'high')
        self.assertEqual(result.action.disposition, 'allow')
        self.assertEqual(spy.call_count, 1)
        self.assertEqual(result.rules_evaluated, 1)

    def test_no_match(self):
        rule = make_rule('r1', config={'subject': {'operator': 'OR', 'values': ['receipt']}})
        result = self.engine.evaluate([rule], self.email)

        self.assertFalse(result.matched)
        self.assertIsNone(result.action)
        self.assertIsNone(result.rule_id)
        self.assertEqual(result.rules_evaluated, 1)

    def test_no_rules(self):
        result = self.engine.evaluate([], self.email)
        self.assertFalse(result.matched)
        self.assertEqual(result.rules_evaluated, 0)

    def test_ai_rule_dispatch(self):
        self.collaborator.evaluate_prompt.return_value = AiVerdict(matched=True, reason='Looks like a bill')
        rule = make_rule('ai', rule_type='ai_prompt', config={'prompt': 'Emails asking for payment'})

        result = self.engine.evaluate([rule], self.email)

        self.assertTrue(result.matched)
        self.assertEqual(result.reason, 'Looks like a bill')
        prompt, summary = self.collaborator.evaluate_prompt.call_args[0]
        self.assertEqual(prompt, 'Emails asking for payment')
        self.assertEqual(summary['subject'], 'Your invoice #123')

    def test_ai_error_does_not_stop_evaluation(self):
        self.collaborator.evaluate_prompt.side_effect = AiEvaluationError('timed out')
        ai_rule = make_rule('ai', priority=10, rule_type='ai_prompt', config={'prompt': 'Anything'})
        explicit_rule = make_rule('explicit', priority=1, action={'action': 'allow'})

        result = self.engine.evaluate([ai_rule, explicit_rule], self.email)

        self.assertTrue(result.matched)
        self.assertEqual(result.rule_id, 'explicit')
        self.assertEqual(len(result.errors), 1)
        self.assertIn('timed out', result.errors[0])

    def test_ai_rule_without_collaborator(self):
        engine = GuardEngine(ActionResolver(self.endpoints))
        rule = make_rule('ai', rule_type='ai_prompt', config={'prompt': 'Anything'})

        result = engine.evaluate([rule], self.email)

        self.assertFalse(result.matched)
        self.assertIn('not configured', result.errors[0])

    def test_route_to_deleted_endpoint(self):
        self.endpoints.get_endpoint.return_value = None
        rule = make_rule('r1', action={'action': 'route', 'endpointId': 'gone'})

        result = self.engine.evaluate([rule], self.email)

        self.assertTrue(result.matched)
        self.assertTrue(result.resolution_failed)
        self.assertIsNone(result.action)
        self.assertIn('gone', result.error)

    def test_cancelled_before_first_rule(self):
        cancel = threading.Event()
        cancel.set()
        with self.assertRaises(EvaluationCancelledError):
            self.engine.evaluate([make_rule('r1')], self.email, cancel_event=cancel)

    def test_unexpected_matcher_error_is_isolated(self):
        broken = make_rule('broken', priority=10)
        working = make_rule('working', priority=1, action={'action': 'allow'})
        real_match = engine_module.match_explicit

        def flaky(config, email):
            if flaky.calls == 0:
                flaky.calls += 1
                raise RuntimeError('boom')
            return real_match(config, email)
        flaky.calls = 0

        with patch.object(engine_module, 'match_explicit', side_effect=flaky):
            result = self.engine.evaluate([broken, working], self.email)

        self.assertEqual(result.rule_id, 'working')
        self.assertIn('boom', result.errors[0])


class TestActionResolver(unittest.TestCase):

    def setUp(self):
        self.endpoints = MagicMock()
        self.resolver = ActionResolver(self.endpoints)

    def test_dispositions(self):
        test_cases = [
            ({'action': 'allow'}, 'allow'),
            ({'action': 'block'}, 'block'),
            (None, 'allow'),
        ]
        for raw, expected in test_cases:
            with self.subTest(action=raw):
                resolved = self.resolver.resolve(parse_action(raw))
                self.assertEqual(resolved.disposition, expected)
                self.assertIsNone(resolved.endpoint_id)
        self.endpoints.get_endpoint.assert_not_called()

    def test_route_failures(self):
        test_cases = [
            ('missing', None, 'not found'),
            ('ep_off', EndpointInfo(id='ep_off', type='webhook', is_active=False), 'inactive'),
        ]
        for endpoint_id, endpoint, message in test_cases:
            with self.subTest(endpoint_id=endpoint_id):
                self.endpoints.get_endpoint.return_value = endpoint
                action = parse_action({'action': 'route', 'endpointId': endpoint_id})

                with self.assertRaises(ActionResolutionError) as ctx:
                    self.resolver.resolve(action)
                self.assertIn(message, str(ctx.exception))
                self.assertEqual(ctx.exception.endpoint_id, endpoint_id)

                with self.assertRaises(ActionResolutionError):
                    self.resolver.validate(action)

    def test_validate_ignores_non_route(self):
        self.resolver.validate(parse_action({'action': 'block'}))
        self.endpoints.get_endpoint.assert_not_called()


if __name__ == '__main__':
    unittest.main()
