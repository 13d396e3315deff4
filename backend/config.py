"""Configuration management for the DocQA retrieval engine."""
import os
from dotenv import load_dotenv

from logger import setup_logging

# Load environment variables
load_dotenv()


def _env_list(name: str, default: str) -> list:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# API Keys
HUGGINGFACE_API_KEY = os.getenv("HUGGINGFACE_API_KEY")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Logging Configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # text | json

# Storage Configuration
CHUNKS_TABLE = os.getenv("CHUNKS_TABLE", "document_chunks")
KEYWORD_TABLE = os.getenv("KEYWORD_TABLE", "chunk_keywords")
VECTOR_MATCH_FUNCTION = "match_chunks"
KEYWORD_SEARCH_FUNCTION = "search_chunks"
# Must match the operator in the match_chunks SQL function:
# cosine -> <=>, l2 -> <->, inner_product -> <#> (negative inner product)
DISTANCE_METRIC = os.getenv("DISTANCE_METRIC", "cosine")

# Model Configuration
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "sentence-transformers/all-mpnet-base-v2")
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "768"))
EMBEDDING_MAX_INPUT_CHARS = int(os.getenv("EMBEDDING_MAX_INPUT_CHARS", "2000"))
EMBEDDING_BATCH_SIZE = int(os.getenv("EMBEDDING_BATCH_SIZE", "32"))

# Token counting: "estimate" (words * 1.33) or "tiktoken"
TOKEN_COUNTER = os.getenv("TOKEN_COUNTER", "estimate")
TIKTOKEN_ENCODING = os.getenv("TIKTOKEN_ENCODING", "cl100k_base")
TOKENS_PER_WORD = 1.33

# Chunking Configuration
CHUNK_MAX_TOKENS = int(os.getenv("CHUNK_MAX_TOKENS", "450"))  # tokens
CHUNK_MIN_TOKENS = int(os.getenv("CHUNK_MIN_TOKENS", "100"))  # tokens
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "50"))  # tokens
MIN_CONTENT_CHARS = 2
HEADING_MAX_CHARS = 80
HEADING_SCAN_LINES = 3

# Per-granularity scales for hierarchical chunking: (max_tokens, min_tokens, overlap_tokens)
HIERARCHY_SCALES = {
    "document": (8000, 4000, 0),
    "section": (2000, 500, 100),
    "paragraph": (500, 100, 50),
    "sentence": (150, 20, 10),
}

# Quality Scoring
QUALITY_BASE = 0.5
QUALITY_LENGTH_BONUS = 0.2
QUALITY_LENGTH_BAND = (200, 2000)  # characters
QUALITY_STRUCTURE_BONUS = 0.15
QUALITY_DIVERSITY_BONUS = 0.15
QUALITY_DIVERSITY_THRESHOLD = 0.5
DOMAIN_KEYWORDS = _env_list(
    "DOMAIN_KEYWORDS",
    "procedure,requirement,policy,definition,deadline,eligibility,must,shall,important,note",
)

# Retrieval Configuration
DEFAULT_TOP_K = 5
SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "0.3"))
OVERFETCH_FACTOR = 3
VECTOR_WEIGHT = float(os.getenv("VECTOR_WEIGHT", "0.7"))
KEYWORD_WEIGHT = float(os.getenv("KEYWORD_WEIGHT", "0.3"))
AGREEMENT_BONUS = float(os.getenv("AGREEMENT_BONUS", "0.1"))
SINGLE_SOURCE_PENALTY = float(os.getenv("SINGLE_SOURCE_PENALTY", "0.8"))
DEDUP_MARGIN = float(os.getenv("DEDUP_MARGIN", "0.1"))
KEYWORD_MIN_TOKEN_LENGTH = 3

# Per-source timeouts in seconds
EMBEDDING_TIMEOUT = float(os.getenv("EMBEDDING_TIMEOUT", "30"))
VECTOR_QUERY_TIMEOUT = float(os.getenv("VECTOR_QUERY_TIMEOUT", "10"))
KEYWORD_QUERY_TIMEOUT = float(os.getenv("KEYWORD_QUERY_TIMEOUT", "10"))

# Confidence Scoring
CONFIDENCE_FLOOR = 0.1
CONFIDENCE_TOP_WEIGHT = 0.6
CONFIDENCE_SPREAD_WEIGHT = 0.2
CONFIDENCE_AGREEMENT_WEIGHT = 0.2
SPREAD_SATURATION = 0.3
ANSWER_THRESHOLD = 0.6
HEDGE_THRESHOLD = 0.3

# Logging Configuration
setup_logging(LOG_LEVEL, json_format=LOG_FORMAT == "json")
