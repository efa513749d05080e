"""
Storyforge LLM Module

Gemini REST client and the generation gateway used by the panel pipeline.
"""

from .api_clients import GeminiClient
from .gateway import GenerationGateway, GeminiGateway

__all__ = [
    'GeminiClient',
    'GenerationGateway',
    'GeminiGateway',
]
