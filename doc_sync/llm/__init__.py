from .base import LLMClient, LLMError, TextGenerator
from .ollama import OllamaGenerator
