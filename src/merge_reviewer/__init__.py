"""Merge Reviewer - AI-assisted pull request review orchestration."""

__version__ = "0.1.0"
