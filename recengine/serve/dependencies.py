from fastapi import Request
import redis.asyncio as redis

from recengine.engine.service import RecommendationService
from recengine.stream.feedback import FeedbackPublisher


async def get_redis_client(request: Request) -> redis.Redis:
    return request.app.state.redis_client


async def get_recommendation_service(request: Request) -> RecommendationService:
    return request.app.state.recommendation_service


async def get_feedback_publisher(request: Request) -> FeedbackPublisher:
    return request.app.state.feedback_publisher
