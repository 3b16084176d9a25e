"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Text normalization
- Document chunking with overlap
- FAISS vector storage
- Ingestion and retrieval pipelines
- Raw-file fallback lookup
"""
