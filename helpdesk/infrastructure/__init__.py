"""
Infrastructure Layer
=====================

Low-level technical concerns shared by the bounded contexts:
- Database engine and session management
- Model provider clients (completions, embeddings)
- Similarity index (in-memory or Milvus)
"""
