from recengine.observability.metrics import metrics, setup_metrics
from recengine.observability.tracing import setup_tracing, repository_span

__all__ = ["metrics", "setup_metrics", "setup_tracing", "repository_span"]
