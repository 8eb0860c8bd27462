
"""
scoring/__init__.py
-------------------
Expose the scoring pipeline entry points.
"""

from .messages import ScoringOutcome, ScoringRequest, ScoringResponse
from .vector_utils import cosine_similarity

__all__ = ["ScoringOutcome", "ScoringRequest", "ScoringResponse", "cosine_similarity"]
