"""
Indexing app.

Ingestion collaborator: turns URLs and uploaded files into evidence
chunks with embeddings.
"""
