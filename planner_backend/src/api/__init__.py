"""
Planner Backend package.

Hierarchical projects and tasks with snapshot-based persistence. The FastAPI
application lives in `src.api.main`; the migration CLI in `src.api.migrate`.
"""
