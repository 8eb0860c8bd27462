"""
scoring/messages.py
-------------------
Inbound / outbound message schemas exchanged with the scoring worker.
"""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ScoringOutcome(str, Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"


class ScoringRequest(BaseModel):
    query_image: str = Field(..., min_length=1, description="Sketch image: URL, data URL, path or base64")
    ans_image: str = Field(..., min_length=1, description="Hidden target image reference")


class ScoringResponse(BaseModel):
    """
    status="complete": `output` holds the score and `outcome` tells a real
    score apart from the 0.0 timeout sentinel.
    status="error": `error` names the failure class, `message` describes it.
    """
    status: Literal["complete", "error"]
    output: Optional[float] = None
    outcome: Optional[ScoringOutcome] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def complete(cls, score: float, outcome: ScoringOutcome) -> "ScoringResponse":
        return cls(status="complete", output=score, outcome=outcome)

    @classmethod
    def failure(cls, error: str, message: str) -> "ScoringResponse":
        return cls(status="error", error=error, message=message)
