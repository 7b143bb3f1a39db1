from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


load_dotenv()


@dataclass(frozen=True)
class Settings:
    # Default DB path used by the web API and CLI defaults.
    db_path: str = os.getenv("KBGRAPH_DB_PATH", "./data/kb.db")

    # Link generation
    min_similarity: float = float(os.getenv("KBGRAPH_MIN_SIMILARITY", "0.15"))
    max_links: int = int(os.getenv("KBGRAPH_MAX_LINKS", "1000"))
    batch_size: int = int(os.getenv("KBGRAPH_BATCH_SIZE", "100"))
    category_bonus: float = float(os.getenv("KBGRAPH_CATEGORY_BONUS", "0.1"))

    log_level: str = os.getenv("KBGRAPH_LOG_LEVEL", "INFO")

    # Ollama (summaries for ingestion)
    ollama_base_url: str = os.getenv("KBGRAPH_OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("KBGRAPH_OLLAMA_MODEL", "llama3.2:1b")
    ollama_temperature: float = float(os.getenv("KBGRAPH_OLLAMA_TEMPERATURE", "0.3"))

    # Embeddings (semantic search over entries)
    embed_model: str = os.getenv("KBGRAPH_EMBED_MODEL", "BAAI/bge-small-en-v1.5")
    search_min_score: float = float(os.getenv("KBGRAPH_SEARCH_MIN_SCORE", "0.5"))
