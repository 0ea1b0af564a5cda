"""RAG knowledge retrieval.

- embeddings / chunker: text → vectors
- store: knowledge chunks and user memories (SQL or in-memory)
- retrieval: the per-request orchestrator
- prompt: enriched prompt rendering
- memory: post-response memory harvesting
"""
