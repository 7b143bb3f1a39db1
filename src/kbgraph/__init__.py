"""kbgraph: link a personal knowledge base into a similarity graph."""

__version__ = "0.1.0"
