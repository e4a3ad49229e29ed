"""LLM advisory collaborator"""
from .deepseek_client import AdvisoryResult, DeepSeekClient
from .errors import LLMError

__all__ = ["AdvisoryResult", "DeepSeekClient", "LLMError"]
