from .base import ModelInvoker
from .factory import build_model_invoker
from .gemini_client import GeminiClient
from .mock_model import MockModelClient
from .openrouter_client import OpenRouterClient

__all__ = ["GeminiClient", "MockModelClient", "ModelInvoker", "OpenRouterClient", "build_model_invoker"]
