"""
RAG (Retrieval Augmented Generation) app.

Provides:
- Query embedding via Ollama
- Workspace- or source-scoped evidence search
- Diversity ranking and mode selection
- Answer synthesis (atomic and streaming) with citations
- The conversation log and the query endpoints
"""
