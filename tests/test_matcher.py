"""
Tests for explicit rule matching.

Covers subject/hasWords substring matching with AND/OR, sender matching with
*@domain wildcards, attachment presence and the AND combination of criteria.
"""

import unittest

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.guard.matcher import match_explicit, sender_matches
from src.guard.schema import Attachment, ExplicitRuleConfig, StructuredEmail


def make_email(**overrides):
    data = {
        'from_addresses': ['alice@example.com'],
        'subject': 'Team meeting tomorrow',
        'text_body': 'Hello, please find attached the agenda',
    }
    data.update(overrides)
    return StructuredEmail(**data)


class TestExplicitMatcher(unittest.TestCase):

    def test_subject_operators(self):
        test_cases = [
            {'operator': 'OR', 'values': ['foo', 'bar'], 'subject': 'bar baz', 'should_match': True},
            {'operator': 'OR', 'values': ['foo', 'bar'], 'subject': 'qux baz', 'should_match': False},
            {'operator': 'AND', 'values': ['foo', 'bar'], 'subject': 'foo and bar', 'should_match': True},
            {'operator': 'AND', 'values': ['foo', 'bar'], 'subject': 'only foo', 'should_match': False},
            {'operator': 'OR', 'values': ['INVOICE'], 'subject': 'Your invoice #123', 'should_match': True},
            {'operator': 'OR', 'values': ['invoice'], 'subject': None, 'should_match': False},
        ]

        for case in test_cases:
            with self.subTest(case=case):
                config = ExplicitRuleConfig.model_validate({
                    'subject': {'operator': case['operator'], 'values': case['values']},
                })
                result = match_explicit(config, make_email(subject=case['subject']))
                self.assertEqual(result.matched, case['should_match'])

    def test_sender_wildcards(self):
        test_cases = [
            {'values': ['*@example.com'], 'sender': 'a@example.com', 'should_match': True},
            {'values': ['*@example.com'], 'sender': 'B@Example.com', 'should_match': True},
            {'values': ['*@example.com'], 'sender': 'a@other.com', 'should_match': False},
            {'values': ['*@example.com'], 'sender': 'a@notexample.com', 'should_match': False},
            {'values': ['*@example.com'], 'sender': 'a@mail.example.com', 'should_match': False},
            {'values': ['boss@example.com'], 'sender': 'Boss@Example.com', 'should_match': True},
            {'values': ['boss@example.com'], 'sender': 'notboss@example.com', 'should_match': False},
        ]

        for case in test_cases:
            with self.subTest(case=case):
                config = ExplicitRuleConfig.model_validate({
                    'from': {'operator': 'OR', 'values': case['values']},
                })
                result = match_explicit(config, make_email(from_addresses=[case['sender']]))
                self.assertEqual(result.matched, case['should_match'])

    def test_sender_and_requires_every_pattern(self):
        config = ExplicitRuleConfig.model_validate({
            'from': {'operator': 'AND', 'values': ['*@example.com', 'bob@other.com']},
        })
        both = make_email(from_addresses=['alice@example.com', 'bob@other.com'])
        one = make_email(from_addresses=['alice@example.com'])

        self.assertTrue(match_explicit(config, both).matched)
        self.assertFalse(match_explicit(config, one).matched)

    def test_sender_display_name_is_stripped(self):
        email = StructuredEmail.model_validate({'from': 'Alice Smith <alice@spam.com>'})
        self.assertEqual(email.from_addresses, ['alice@spam.com'])
        self.assertTrue(sender_matches(['alice@spam.com'], '*@spam.com'))

    def test_has_attachment(self):
        with_attachment = make_email(attachments=[Attachment(filename='a.pdf')])
        without_attachment = make_email(attachments=[])

        test_cases = [
            (True, with_attachment, True),
            (True, without_attachment, False),
            (False, without_attachment, True),
            (False, with_attachment, False),
        ]
        for required, email, should_match in test_cases:
            with self.subTest(required=required, attachments=len(email.attachments)):
                config = ExplicitRuleConfig(has_attachment=required)
                self.assertEqual(match_explicit(config, email).matched, should_match)

    def test_has_words_searches_text_and_html(self):
        config = ExplicitRuleConfig.model_validate({
            'hasWords': {'operator': 'AND', 'values': ['refund', 'order']},
        })
        email = make_email(text_body='About your refund', html_body='<p>Order 42</p>')
        self.assertTrue(match_explicit(config, email).matched)

        email = make_email(text_body='About your refund', html_body=None)
        self.assertFalse(match_explicit(config, email).matched)

    def test_criteria_are_combined_with_and(self):
        config = ExplicitRuleConfig.model_validate({
            'subject': {'operator': 'OR', 'values': ['meeting']},
            'from': {'operator': 'OR', 'values': ['*@example.com']},
        })

        result = match_explicit(config, make_email())
        self.assertTrue(result.matched)
        self.assertEqual([d.criteria for d in result.match_details], ['subject', 'from'])
        self.assertEqual(result.match_details[0].value, 'Matched with OR logic')

        result = match_explicit(config, make_email(from_addresses=['alice@other.com']))
        self.assertFalse(result.matched)
        self.assertEqual(result.match_details, [])

    def test_attachment_detail_text(self):
        config = ExplicitRuleConfig(has_attachment=True)
        email = make_email(attachments=[Attachment(filename='a.pdf')])
        result = match_explicit(config, email)
        self.assertEqual(result.match_details[0].criteria, 'hasAttachment')
        self.assertEqual(result.match_details[0].value, 'Email has attachments')


if __name__ == '__main__':
    unittest.main()
