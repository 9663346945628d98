"""Context acquisition pipeline."""

from merge_reviewer.context.builder import ContextBuilder, summarize_context, validate_context
from merge_reviewer.context.extractor import RawChangesExtractor, summarize_changes
from merge_reviewer.context.fetcher import SelectiveFileFetcher, SourceControlFileFetcher
from merge_reviewer.context.languages import detect_language
from merge_reviewer.context.pipeline import ContextAcquisitionPipeline
from merge_reviewer.context.structure import RepositoryStructureReader

__all__ = [
    "ContextAcquisitionPipeline",
    "ContextBuilder",
    "RawChangesExtractor",
    "RepositoryStructureReader",
    "SelectiveFileFetcher",
    "SourceControlFileFetcher",
    "detect_language",
    "summarize_changes",
    "summarize_context",
    "validate_context",
]
