"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
CORPUS_DIR = Path(os.getenv("CORPUS_DIR", str(BASE_DIR / "corpus")))
RAW_FILES_DIR = Path(os.getenv("RAW_FILES_DIR", str(BASE_DIR / "raw_files")))

# Ensure data directory exists
DATA_DIR.mkdir(parents=True, exist_ok=True)

# OpenAI-compatible LLM service
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "1536"))
CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4-turbo")
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.2"))
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "60.0"))

# Chunking (character-based)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1000"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))
MIN_CHUNK_LENGTH = int(os.getenv("MIN_CHUNK_LENGTH", "50"))  # shorter chunks are dropped

# Ingestion throttling (embedding service quota)
INSERT_BATCH_SIZE = int(os.getenv("INSERT_BATCH_SIZE", "5"))
INSERT_BATCH_DELAY = float(os.getenv("INSERT_BATCH_DELAY", "1.0"))  # seconds
EMBED_CONCURRENCY = int(os.getenv("EMBED_CONCURRENCY", "5"))

# Retrieval
MATCH_THRESHOLD = float(os.getenv("MATCH_THRESHOLD", "0.78"))
MATCH_COUNT = int(os.getenv("MATCH_COUNT", "5"))
RETRIEVAL_STEP_TIMEOUT = float(os.getenv("RETRIEVAL_STEP_TIMEOUT", "0")) or None  # 0 = no timeout
ENABLE_RAG = os.getenv("ENABLE_RAG", "true").lower() != "false"

# Fallback raw-file lookup
FALLBACK_SOURCES = [
    name.strip()
    for name in os.getenv("FALLBACK_SOURCES", "martabah samilah.txt,waqfeya.txt").split(",")
    if name.strip()
]
FALLBACK_EXCERPT_CHARS = int(os.getenv("FALLBACK_EXCERPT_CHARS", "6000"))
FALLBACK_BACKEND = os.getenv("FALLBACK_BACKEND", "local")  # "local" or "supabase"

# Supabase Storage (remote raw files)
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "islamic_buckets")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
