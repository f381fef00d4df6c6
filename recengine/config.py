import os
from pathlib import Path

# data paths
DATA_DIR = Path("data")
REPOSITORY_SNAPSHOT_PATH = Path(
    os.getenv("REPOSITORY_SNAPSHOT_PATH", str(DATA_DIR / "snapshot.json"))
)

# redis
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
CACHE_KEY_PREFIX = "webspark"
CACHE_NAMESPACE_USER_PROFILE = "user_profile"  # personalized + hybrid
CACHE_NAMESPACE_POPULAR = "popular_websites"  # trending + similar users

# cache ttl (seconds)
CACHE_TTL_SHORT = 300
CACHE_TTL_MEDIUM = 1800

# kafka
KAFKA_BOOTSTRAP_SERVERS = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")
KAFKA_TOPIC_FEEDBACK = "recommendation_feedback"

# request handling
DEFAULT_TIMEOUT_SECONDS = float(os.getenv("RECOMMENDATION_TIMEOUT_SECONDS", 5.0))
MAX_LIMIT = 100

# preference analysis
INTERACTION_BASE_WEIGHTS = {"like": 5.0, "bookmark": 4.0, "comment": 3.0, "view": 1.0}
HISTORY_LIMITS = {"like": 50, "bookmark": 50, "comment": 30, "view": 100}
VIEW_HISTORY_DAYS = 90
DECAY_DAYS = 30  # exp(-age/30)
RECENT_WINDOW_DAYS = 7
TOP_CATEGORIES = 5
TOP_TAGS = 10
DEFAULT_INTERACTION_PATTERN = {
    "likes_weight": 0.3,
    "views_weight": 0.4,
    "bookmarks_weight": 0.2,
    "comments_weight": 0.1,
}

# candidate generation
VIEW_EXCLUSION_DAYS = 7

# collaborative filtering
SIMILAR_USERS_TOP_N = 20

# trending: time range -> (window days, decay hours)
TRENDING_WINDOWS = {"day": (1, 24), "week": (7, 168), "month": (30, 720)}
