"""Utility functions and helpers."""

from src.utils.parsing import extract_json_object
from src.utils.protocols import InferenceCollaboratorProtocol, LLMClientProtocol

__all__ = [
    "extract_json_object",
    "InferenceCollaboratorProtocol",
    "LLMClientProtocol",
]
