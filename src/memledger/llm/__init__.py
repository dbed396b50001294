"""Language-generation collaborators and prompt builders."""

from memledger.errors import LLMError
from memledger.llm.adapters import build_language_model
from memledger.llm.adapters import LanguageModel
from memledger.llm.adapters import NoopLanguageModel
from memledger.llm.adapters import OpenAICompatibleLanguageModel

__all__ = [
    "LLMError",
    "LanguageModel",
    "NoopLanguageModel",
    "OpenAICompatibleLanguageModel",
    "build_language_model",
]
