"""Analyzer gateway and result normalization.

Components:
- AnalyzerGateway: Async HTTP client with bounded retry and adaptive timeout
- RetryPolicy: Backoff/timeout schedule
- AnalyzerError / AnalyzerUnavailableError / AnalyzerRejectedError: Failure taxonomy
- AnalyzerRequest: Request payload
- Match: Normalized analyzer match
- normalize_response: Pure mapping from raw response to matches
- AnalyzerConfig: Pydantic settings (ANALYZER_ prefix)
"""

from subscription_worker.analyzer.client import (
    AnalyzerError,
    AnalyzerGateway,
    AnalyzerRejectedError,
    AnalyzerUnavailableError,
    RetryPolicy,
)
from subscription_worker.analyzer.config import AnalyzerConfig
from subscription_worker.analyzer.normalizer import normalize_response
from subscription_worker.analyzer.schemas import AnalyzerRequest, Match

__all__ = [
    "AnalyzerConfig",
    "AnalyzerError",
    "AnalyzerGateway",
    "AnalyzerRejectedError",
    "AnalyzerRequest",
    "AnalyzerUnavailableError",
    "Match",
    "RetryPolicy",
    "normalize_response",
]
