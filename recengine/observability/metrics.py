from prometheus_client import Counter, Histogram


class Metrics:
    def __init__(self):
        # api metrics
        self.recommendation_requests = Counter(
            "recommendation_requests_total",
            "Total recommendation requests",
            ["strategy"],  # "personalized", "similar_users", "trending", "hybrid"
        )

        self.recommendation_fallback = Counter(
            "recommendation_fallback_total",
            "Fallback to trending (or empty) recommendations",
            ["strategy", "reason"],
        )

        self.recommendation_results = Histogram(
            "recommendation_results_count",
            "Number of recommendations returned per request",
            ["strategy"],
            buckets=(0, 1, 5, 10, 20, 50, 100),
        )

        self.strategy_duration = Histogram(
            "recommendation_strategy_duration_seconds",
            "Time spent computing a strategy (cache misses only)",
            ["strategy"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
        )

        # cache metrics
        self.cache_requests = Counter(
            "recommendation_cache_requests_total",
            "Recommendation cache lookups",
            ["strategy", "result"],  # "hit", "miss"
        )

        self.cache_errors = Counter(
            "recommendation_cache_errors_total",
            "Cache backend failures (swallowed)",
            ["operation"],  # "get", "set"
        )

        # repository metrics
        self.repository_query_duration = Histogram(
            "repository_query_duration_seconds",
            "Repository query latency",
            ["query"],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        self.repository_errors = Counter(
            "repository_errors_total",
            "Repository queries that raised",
            ["query"],
        )

        # pipeline degradation
        self.preference_source_failures = Counter(
            "preference_source_failures_total",
            "Interaction history sources dropped from a preference profile",
            ["source"],  # "like", "bookmark", "comment", "view"
        )

        self.hybrid_branch_failures = Counter(
            "hybrid_branch_failures_total",
            "Hybrid branches that failed and contributed nothing",
            ["branch"],
        )

        self.candidates_scored = Histogram(
            "recommendation_candidates_scored",
            "Size of the candidate pool passed to scoring",
            buckets=(0, 10, 50, 100, 250, 500),
        )

        # feedback endpoint metrics
        self.feedback_events_accepted = Counter(
            "feedback_events_accepted_total",
            "Feedback events handed to the Kafka producer",
            ["recommendation_type", "rating"],
        )

        self.feedback_publish_errors = Counter(
            "feedback_publish_errors_total",
            "Feedback events that could not be handed to Kafka",
        )


# singleton instance
metrics = Metrics()


def setup_metrics(app):
    """
    setup prometheus metrics instrumentation for fastapi.
    it auto-instruments all http endpoints with request count/latency.
    """
    from prometheus_fastapi_instrumentator import Instrumentator

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=False,
        excluded_handlers=["/health/live", "/health/ready", "/metrics"],
    )

    instrumentator.instrument(app).expose(app, include_in_schema=False)
