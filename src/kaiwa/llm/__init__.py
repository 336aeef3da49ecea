"""
Language-model integration: prompts and the ConversationEvaluator.
"""

from .evaluator import AnthropicEvaluator, ConversationEvaluator

__all__ = ["AnthropicEvaluator", "ConversationEvaluator"]
