# text_generators/__init__.py
from .base import TextGeneratorAPI
from .anthropic import AnthropicTextGenerator
from .openai_chatgpt import OpenAIChatTextGenerator

__all__ = [
    "TextGeneratorAPI",
    "AnthropicTextGenerator",
    "OpenAIChatTextGenerator",
    "get_text_generator",
]


def get_text_generator(api: str, model: str, *, timeout: float = 120.0) -> TextGeneratorAPI:
    """Return an appropriate text-generator instance for the given API."""
    if api == "anthropic":
        return AnthropicTextGenerator(model, timeout=timeout)
    if api in ("openai", "chatgpt"):
        return OpenAIChatTextGenerator(model, timeout=timeout)
    raise ValueError(f"Unknown API: {api}")
