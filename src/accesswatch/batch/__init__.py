"""Batch re-scoring of stored access events."""

from .analyzer import BatchAnalysisResult, BatchAnalyzer

__all__ = ["BatchAnalysisResult", "BatchAnalyzer"]
