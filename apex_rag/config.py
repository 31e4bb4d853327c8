"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))

# Wiki source
WIKI_BASE_URL = os.getenv("WIKI_BASE_URL", "https://apexlegends.wiki.gg/wiki")
WIKI_USER_AGENT = os.getenv(
    "WIKI_USER_AGENT", "Mozilla/5.0 (compatible; ApexRAG/1.0)"
)
WIKI_TIMEOUT = float(os.getenv("WIKI_TIMEOUT", "15.0"))

# Seed pages for ingestion. Index pages only enumerate other pages.
INDEX_PAGES = ["Legends", "Weapons", "Seasons", "Events", "Cosmetics"]
DIRECT_PAGES = ["Apex_Legends", "Item", "Maps", "Game_modes", "Lore"]

# Gemini configuration
GEMINI_BASE_URL = os.getenv(
    "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
)
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gemini-1.5-flash-latest")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-004")
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "768"))
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "60.0"))

# Embedding retry (total attempts, base delay doubles each attempt)
EMBED_MAX_ATTEMPTS = int(os.getenv("EMBED_MAX_ATTEMPTS", "3"))
EMBED_RETRY_BASE_DELAY = float(os.getenv("EMBED_RETRY_BASE_DELAY", "1.0"))
EMBED_CONCURRENCY = int(os.getenv("EMBED_CONCURRENCY", "8"))

# Vector index
VECTOR_BACKEND = os.getenv("VECTOR_BACKEND", "pinecone")  # pinecone | faiss
PINECONE_API_KEY = os.getenv("PINECONE_API_KEY", "")
PINECONE_HOST = os.getenv("PINECONE_HOST", "")
PINECONE_NAMESPACE = os.getenv("PINECONE_NAMESPACE", "")
VECTOR_TIMEOUT = float(os.getenv("VECTOR_TIMEOUT", "30.0"))
FAISS_INDEX_DIR = Path(os.getenv("FAISS_INDEX_DIR", str(DATA_DIR / "faiss")))

# Ingestion parameters
MIN_CHUNK_LENGTH = int(os.getenv("MIN_CHUNK_LENGTH", "50"))
UPSERT_BATCH_SIZE = int(os.getenv("UPSERT_BATCH_SIZE", "100"))
SCRAPE_DELAY = float(os.getenv("SCRAPE_DELAY", "0.5"))  # seconds between fetches

# RAG parameters
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "7"))
VERIFY_SOURCES = os.getenv("VERIFY_SOURCES", "false").lower() in ("1", "true", "yes")

# Chat endpoint
MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", "2000"))
CHAT_TIMEOUT = float(os.getenv("CHAT_TIMEOUT", "90.0"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
