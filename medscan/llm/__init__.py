# medscan/llm/__init__.py
from .client import VisionClient, OpenAIVisionClient

__all__ = ["VisionClient", "OpenAIVisionClient"]
