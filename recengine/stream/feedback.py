import logging
import time
from typing import Any, Optional

from kafka import KafkaProducer

from recengine.config import KAFKA_TOPIC_FEEDBACK
from recengine.observability import metrics

logger = logging.getLogger(__name__)

LOW_RATING_THRESHOLD = 2


class FeedbackPublisher:
    """
    Hands recommendation feedback to Kafka without waiting for the broker.

    ``KafkaProducer.send`` only enqueues the record; delivery happens on the
    producer's background thread, so a request never blocks on Kafka.
    """

    def __init__(self, producer: Optional[KafkaProducer], topic: str = KAFKA_TOPIC_FEEDBACK):
        self._producer = producer
        self._topic = topic

    @property
    def available(self) -> bool:
        return self._producer is not None

    def publish(
        self,
        user_id: int,
        item_id: int,
        recommendation_type: str,
        rating: int,
        feedback: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        if self._producer is None:
            raise RuntimeError("Kafka producer not available")

        event = {
            "user_id": user_id,
            "item_id": item_id,
            "recommendation_type": recommendation_type,
            "rating": rating,
            "feedback": feedback,
            "context": context or {},
            "event_type": "recommendation_feedback",
            "timestamp": time.time(),
        }

        try:
            self._producer.send(self._topic, key=str(user_id).encode("utf-8"), value=event)
        except Exception as e:
            metrics.feedback_publish_errors.inc()
            logger.error(f"Failed to send feedback event: {e}")
            raise

        metrics.feedback_events_accepted.labels(
            recommendation_type=recommendation_type, rating=str(rating)
        ).inc()
        logger.info(
            f"Feedback event sent: user_id={user_id}, item_id={item_id}, "
            f"type={recommendation_type}, rating={rating}"
        )
        if rating <= LOW_RATING_THRESHOLD:
            logger.warning(
                f"Low rating feedback: user_id={user_id}, item_id={item_id}, "
                f"type={recommendation_type}, rating={rating}, feedback={feedback!r}"
            )
        return event
