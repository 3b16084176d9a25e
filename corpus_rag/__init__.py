"""Corpus RAG: document ingestion and grounded retrieval."""
