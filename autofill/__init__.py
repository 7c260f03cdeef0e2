"""
Form autofill engine.

Resolves every field of an unfamiliar form from learned answers, the user's
profile and an AI model, then fills it until no new fields appear.

Usage:
    from autofill import AnswerResolver, FillOrchestrator, PlaywrightFormPage
    from storage import JsonFileStore, MemoryStore

    memory = MemoryStore(JsonFileStore("data/learned_questions.json"))
    resolver = AnswerResolver(memory, build_ai_client())
    report = await FillOrchestrator(PlaywrightFormPage(page), resolver, memory).fill(profile)
    print(report.summary())
"""

from .ai_client import AIClient, ModelRotation, build_ai_client
from .field_classifier import FieldDescriptor, FieldType, RawField, classify
from .option_matcher import match
from .orchestrator import FillOrchestrator, FillReport, MissingField, MissingReason
from .page import PlaywrightFormPage
from .profile import ProfileManager, get_profile_manager
from .resolver import AnswerResolver, Provenance, ResolutionResult

__all__ = [
    "AIClient",
    "ModelRotation",
    "build_ai_client",
    "FieldDescriptor",
    "FieldType",
    "RawField",
    "classify",
    "match",
    "FillOrchestrator",
    "FillReport",
    "MissingField",
    "MissingReason",
    "PlaywrightFormPage",
    "ProfileManager",
    "get_profile_manager",
    "AnswerResolver",
    "Provenance",
    "ResolutionResult",
]
