"""Entry embeddings and semantic search."""
