from pydantic import BaseModel, Field
from typing import List, Dict, Any, Literal, Optional

RecommendationType = Literal["personalized", "similar_users", "trending", "hybrid"]


class RecommendationItem(BaseModel):
    item_id: int
    score: float
    confidence: float = Field(ge=0.0, le=1.0)
    diversity: float = Field(ge=0.0, le=1.0)
    reasons: List[str] = Field(default_factory=list)


class RecommendationResponse(BaseModel):
    user_id: Optional[int] = None  # absent for anonymous trending
    strategy: RecommendationType
    limit: int
    recommendations: List[RecommendationItem]
    meta: Dict[str, Any] = Field(default_factory=dict)


class FeedbackEvent(BaseModel):
    user_id: int = Field(gt=0)
    item_id: int = Field(gt=0)
    recommendation_type: RecommendationType
    rating: int = Field(ge=1, le=5)
    feedback: Optional[str] = Field(default=None, max_length=1000)
    context: Dict[str, Any] = Field(default_factory=dict)


class FeedbackAccepted(BaseModel):
    status: str = "accepted"
    message: str
    event: Dict[str, Any]
