"""SQLite storage for knowledge base entries."""
