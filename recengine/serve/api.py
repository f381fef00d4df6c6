from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Depends, Response, Query, Path, HTTPException, status
import redis.asyncio as redis
import json
import time
from kafka import KafkaProducer

from recengine.logging import setup_logging
from recengine.observability import setup_metrics, setup_tracing

from recengine.serve.dependencies import (
    get_redis_client,
    get_recommendation_service,
    get_feedback_publisher,
)

from recengine.config import (
    REDIS_HOST,
    REDIS_PORT,
    KAFKA_BOOTSTRAP_SERVERS,
    KAFKA_TOPIC_FEEDBACK,
    DEFAULT_TIMEOUT_SECONDS,
    MAX_LIMIT,
    REPOSITORY_SNAPSHOT_PATH,
)

from recengine.engine.cache import RedisCache
from recengine.engine.errors import ValidationError
from recengine.engine.models import RecommendationScore, TimeRange
from recengine.engine.repository import InMemoryRepository
from recengine.engine.service import RecommendationService
from recengine.stream.feedback import FeedbackPublisher

from recengine.serve.schemas import (
    RecommendationItem,
    RecommendationResponse,
    FeedbackEvent,
    FeedbackAccepted,
)

logger = setup_logging("api.log")


def load_repository() -> InMemoryRepository:
    if REPOSITORY_SNAPSHOT_PATH.exists():
        return InMemoryRepository.from_snapshot(REPOSITORY_SNAPSHOT_PATH)
    logger.warning(
        f"No repository snapshot at {REPOSITORY_SNAPSHOT_PATH}, starting with an empty repository"
    )
    return InMemoryRepository()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing connections...")
    app.state.redis_client = redis.Redis(
        host=REDIS_HOST, port=REDIS_PORT, decode_responses=True
    )
    app.state.recommendation_service = RecommendationService(
        repository=load_repository(),
        cache=RedisCache(app.state.redis_client),
    )

    # initialize kafka producer for feedback events
    try:
        producer = KafkaProducer(
            bootstrap_servers=KAFKA_BOOTSTRAP_SERVERS,
            value_serializer=lambda x: json.dumps(x).encode("utf-8"),
        )
        logger.info("Kafka producer initialized")
    except Exception as e:
        logger.warning(f"Kafka producer failed to initialize: {e}")
        producer = None
    app.state.feedback_publisher = FeedbackPublisher(producer, KAFKA_TOPIC_FEEDBACK)

    yield
    logger.info("Closing connections...")
    await app.state.redis_client.aclose()
    if producer:
        producer.close()


app = FastAPI(title="RecommendationEngineAPI", lifespan=lifespan)

setup_metrics(app)
setup_tracing(app)


def to_response(
    strategy: str,
    user_id: Optional[int],
    limit: int,
    recommendations: list[RecommendationScore],
    **meta,
) -> RecommendationResponse:
    return RecommendationResponse(
        user_id=user_id,
        strategy=strategy,
        limit=limit,
        recommendations=[
            RecommendationItem(**rec.to_dict()) for rec in recommendations
        ],
        meta={"count": len(recommendations), "generated_at": time.time(), **meta},
    )


def validation_error(e: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=str(e),
    )


@app.get("/health/live")
async def health_check_live():
    return {"status": "ok"}


@app.get("/health/ready")
async def health_check(
    response: Response,
    redis_conn: redis.Redis = Depends(get_redis_client),
):
    health_status = {
        "status": "ok",
        "components": {
            "redis": {"status": "unknown", "latency_ms": 0},
        },
    }

    start_time = time.time()
    try:
        await redis_conn.ping()
        latency = (time.time() - start_time) * 1000
        health_status["components"]["redis"] = {
            "status": "up",
            "latency_ms": round(latency, 2),
        }
        response.status_code = status.HTTP_200_OK
    except Exception as e:
        health_status["status"] = "error"
        health_status["components"]["redis"] = {"status": "down", "error": str(e)}
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return health_status


@app.get(
    "/recommendations/personalized/{user_id}", response_model=RecommendationResponse
)
async def personalized_recommendations(
    user_id: int = Path(gt=0),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    exclude_authored: bool = Query(True),
    min_score: Optional[float] = Query(None, ge=0),
    diversity_threshold: Optional[float] = Query(None, ge=0, le=1),
    author_diversity_limit: Optional[int] = Query(None, ge=1),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """
    personalized recommendations from the user's preference profile.

    degrades to weekly trending for low-activity users or when the personalized
    pipeline fails, so this endpoint never answers 5xx for algorithmic errors.
    """
    config = {
        "min_score": min_score,
        "diversity_threshold": diversity_threshold,
        "author_diversity_limit": author_diversity_limit,
    }
    try:
        recommendations = await service.get_user_recommendations(
            user_id,
            limit,
            exclude_authored=exclude_authored,
            config=config,
            timeout=DEFAULT_TIMEOUT_SECONDS,
        )
    except ValidationError as e:
        raise validation_error(e)

    return to_response(
        "personalized",
        user_id,
        limit,
        recommendations,
        exclude_authored=exclude_authored,
        config={k: v for k, v in config.items() if v is not None},
    )


@app.get(
    "/recommendations/similar-users/{user_id}", response_model=RecommendationResponse
)
async def similar_user_recommendations(
    user_id: int = Path(gt=0),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    service: RecommendationService = Depends(get_recommendation_service),
):
    try:
        recommendations = await service.get_similar_user_recommendations(
            user_id, limit, timeout=DEFAULT_TIMEOUT_SECONDS
        )
    except ValidationError as e:
        raise validation_error(e)

    return to_response("similar_users", user_id, limit, recommendations)


@app.get("/recommendations/trending", response_model=RecommendationResponse)
async def trending_recommendations(
    user_id: Optional[int] = Query(None, gt=0),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    time_range: TimeRange = Query(TimeRange.WEEK),
    service: RecommendationService = Depends(get_recommendation_service),
):
    try:
        recommendations = await service.get_trending_recommendations(
            user_id, limit, time_range, timeout=DEFAULT_TIMEOUT_SECONDS
        )
    except ValidationError as e:
        raise validation_error(e)

    return to_response(
        "trending", user_id, limit, recommendations, time_range=time_range.value
    )


@app.get("/recommendations/hybrid/{user_id}", response_model=RecommendationResponse)
async def hybrid_recommendations(
    user_id: int = Path(gt=0),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    service: RecommendationService = Depends(get_recommendation_service),
):
    try:
        recommendations = await service.get_hybrid_recommendations(
            user_id, limit, timeout=DEFAULT_TIMEOUT_SECONDS
        )
    except ValidationError as e:
        raise validation_error(e)

    return to_response("hybrid", user_id, limit, recommendations)


@app.post(
    "/recommendations/feedback",
    response_model=FeedbackAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def record_feedback(
    event: FeedbackEvent,
    publisher: FeedbackPublisher = Depends(get_feedback_publisher),
):
    """
    record feedback on a recommendation. the event is queued on kafka and the
    request returns without waiting for the broker.
    """
    if not publisher.available:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Kafka producer not available. Cannot record feedback.",
        )

    try:
        published = publisher.publish(
            user_id=event.user_id,
            item_id=event.item_id,
            recommendation_type=event.recommendation_type,
            rating=event.rating,
            feedback=event.feedback,
            context=event.context,
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to record feedback: {e}",
        )

    return FeedbackAccepted(
        message="Feedback event sent to processing queue",
        event=published,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
