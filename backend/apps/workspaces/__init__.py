"""
Workspaces app.

Provides:
- Workspace and EvidenceSource models
- Idempotent default-workspace lookup
- Source listing and ingestion endpoints
"""
