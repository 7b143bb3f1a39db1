"""Turning files and JSONL exports into knowledge base entries."""
