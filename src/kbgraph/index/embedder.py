from __future__ import annotations

import numpy as np


class Embedder:
    """fastembed text model producing L2-normalized float32 vectors."""

    def __init__(self, model_name: str):
        # Import here so the rest of the CLI runs without the embed extra.
        from fastembed import TextEmbedding  # type: ignore

        self.model_name = model_name
        self._model = TextEmbedding(model_name=model_name)

    def embed_texts(self, texts: list[str]) -> np.ndarray:
        """Return an [n, d] matrix; an empty input gives shape (0, 0)."""
        if not texts:
            return np.zeros((0, 0), dtype=np.float32)
        vectors = np.array(list(self._model.embed(texts)), dtype=np.float32)
        return l2_normalize(vectors)

    def embed_query(self, query: str) -> np.ndarray:
        return self.embed_texts([query])[0]


def l2_normalize(x: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    norm = np.linalg.norm(x, axis=1, keepdims=True)
    return x / np.maximum(norm, eps)
