"""
Language model integration for the inbound guard
"""
from .client import OpenAIGuardClient, get_model_name

__all__ = ['OpenAIGuardClient', 'get_model_name']
