"""
Tab categorization package.

This package contains:

- the taxonomy and the deterministic domain/title knowledge
- the confidence-weighted category cache
- the validator and the fallback analyzer
- the OpenAI-compatible classifier client and free-tier usage tracking
- the multi-pass pipeline, the label consolidator and the CLI entrypoint
"""

from .consolidate import consolidate_categories
from .pipeline import Assignment, CategorizationPipeline, PipelineResult, TabStatus
from .provider import OpenAICompatibleClassifier, ProviderProfile, build_classifier
from .taxonomy import CustomCategory, Taxonomy

__all__ = [
    "Assignment",
    "CategorizationPipeline",
    "CustomCategory",
    "OpenAICompatibleClassifier",
    "PipelineResult",
    "ProviderProfile",
    "TabStatus",
    "Taxonomy",
    "build_classifier",
    "consolidate_categories",
]
