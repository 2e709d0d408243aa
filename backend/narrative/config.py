# narrative/config.py
import os
from typing import List

from dotenv import load_dotenv

# On Render, environment variables are set directly; locally they come from .env
load_dotenv()

MONGODB_URI = os.getenv("MONGODB_URI")
MONGODB_DB_NAME = os.getenv("MONGODB_DB_NAME")

# Models
AI_MODEL_PRO = os.getenv("AI_MODEL_PRO", "gemini-2.5-pro")
AI_MODEL_FAST = os.getenv("AI_MODEL_FAST", "gemini-2.5-flash")
AI_MODEL_EMBEDDING = os.getenv("AI_MODEL_EMBEDDING", "text-embedding-004")

# Timeouts (seconds)
ANALYSIS_TIMEOUT_SECONDS = int(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "60"))
GATEKEEPER_TIMEOUT_SECONDS = int(os.getenv("GATEKEEPER_TIMEOUT_SECONDS", "15"))
EMBEDDING_TIMEOUT_SECONDS = int(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "20"))

MAX_ANALYSIS_ATTEMPTS = int(os.getenv("MAX_ANALYSIS_ATTEMPTS", "3"))

# Worker
WORKER_DELAY_SECONDS = float(os.getenv("WORKER_DELAY_SECONDS", "31"))
CLAIM_LEASE_SECONDS = int(os.getenv("CLAIM_LEASE_SECONDS", "300"))
# Failed articles wait before the next attempt, doubling per failure
FAILED_RETRY_BASE_SECONDS = int(os.getenv("FAILED_RETRY_BASE_SECONDS", "600"))
FAILED_RETRY_MAX_SECONDS = int(os.getenv("FAILED_RETRY_MAX_SECONDS", str(6 * 60 * 60)))
ANALYSIS_VERSION = os.getenv("ANALYSIS_VERSION", "3.8")
INGESTION_INTERVAL_SECONDS = int(os.getenv("INGESTION_INTERVAL_SECONDS", str(30 * 60)))

GEMINI_PROVIDER = "gemini"
GATEKEEPER_PROVIDER = "gatekeeper"
MAX_KEYS_PER_PROVIDER = 20


def require_mongo_config():
    """Verify the database settings are present before opening a connection"""
    if not MONGODB_URI:
        raise ValueError("MONGODB_URI environment variable is not set!")
    if not MONGODB_DB_NAME:
        raise ValueError("MONGODB_DB_NAME environment variable is not set!")
    return MONGODB_URI, MONGODB_DB_NAME


def load_api_keys(prefix: str) -> List[str]:
    """
    Load a credential pool from the environment.

    Reads PREFIX_API_KEY_1 .. PREFIX_API_KEY_20 in order and falls back to
    PREFIX_API_KEY when no numbered keys are set.
    """
    keys = []
    for i in range(1, MAX_KEYS_PER_PROVIDER + 1):
        key = (os.getenv(f"{prefix}_API_KEY_{i}") or "").strip()
        if key:
            keys.append(key)

    default_key = (os.getenv(f"{prefix}_API_KEY") or "").strip()
    if not keys and default_key:
        keys.append(default_key)

    return keys


def load_provider_keys() -> dict:
    """Credential pools for every provider the pipeline talks to"""
    gemini_keys = load_api_keys("GEMINI")
    gatekeeper_keys = load_api_keys("GATEKEEPER") or list(gemini_keys)
    return {
        GEMINI_PROVIDER: gemini_keys,
        GATEKEEPER_PROVIDER: gatekeeper_keys,
    }


class ClusteringConfig:
    """Cluster assignment thresholds and windows"""

    # Syndicated copy of an already analyzed article
    DUPLICATE_THRESHOLD = 0.92
    DUPLICATE_WINDOW_HOURS = 24

    # Same headline reworded by another outlet
    HEADLINE_THRESHOLD = 0.80
    HEADLINE_WINDOW_HOURS = 24
    HEADLINE_CANDIDATES = 20

    # Same news event, different coverage
    TOPIC_MATCH_THRESHOLD = float(os.getenv("CLUSTER_TOPIC_MATCH_THRESHOLD", "0.82"))
    TOPIC_WINDOW_DAYS = 7

    VECTOR_INDEX_NAME = os.getenv("VECTOR_INDEX_NAME", "vector_index")
    VECTOR_PATH = "embedding"
    DUPLICATE_NUM_CANDIDATES = 10
    TOPIC_NUM_CANDIDATES = 50
    VECTOR_RESULT_LIMIT = 5

    COUNTER_KEY = "GLOBAL_CLUSTER_ID"
    COUNTER_START = 1


class FilterConfig:
    """Candidate scoring and validation settings"""

    DEFAULT_WEIGHTS = {
        "image_bonus": 2,
        "missing_image_penalty": -2,
        "missing_image_untrusted_penalty": -10,
        "trusted_source_bonus": 5,
        "title_length_bonus": 1,
        "junk_keyword_penalty": -20,
        "min_score_cutoff": 0,
    }

    WEIGHTS_CONFIG_KEY = "scoring_weights"
    WEIGHTS_CACHE_TTL_SECONDS = 300

    LONG_TITLE_CHARS = 40
    MIN_TITLE_CHARS = 20
    MIN_DESCRIPTION_CHARS = 30
    MIN_TOTAL_WORDS = 40
    NO_TITLE_SENTINEL = "No Title"

    FUZZY_MAX_LENGTH_DIFF = 20
    FUZZY_SIMILARITY_THRESHOLD = 0.8
