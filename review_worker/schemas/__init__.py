"""
Schemas package.

Import all schemas here for easy access.
"""

from review_worker.schemas.job import (
    AIGenerationPayload,
    AIGenerationResult,
    JobOutcome,
    PromptAnalysisPayload,
    PromptAnalysisResult,
    ReviewProcessingPayload,
    ReviewProcessingResult,
    SentimentAnalysisPayload,
    SentimentAnalysisResult,
)

__all__ = [
    "AIGenerationPayload",
    "AIGenerationResult",
    "JobOutcome",
    "PromptAnalysisPayload",
    "PromptAnalysisResult",
    "ReviewProcessingPayload",
    "ReviewProcessingResult",
    "SentimentAnalysisPayload",
    "SentimentAnalysisResult",
]
