"""Adapters — persistence and external integrations.

Contains:
- repositories.py     — SQLAlchemy repositories
- source_fetcher.py   — HttpSourceFetcher for regulatory content
- analysis_client.py  — ChangeAnalysisClient for the optional analysis service
"""

__all__: list[str] = []
