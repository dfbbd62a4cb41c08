"""
AI Gateway — Application Package Initializer
=============================================

What: The request-handling boundary every model-backed feature of the study
      app passes through (summaries, flashcards, quizzes, chat, transcription).
Who:  Used by uvicorn (`gateway.main:app`), Alembic, and pytest.

Architecture Note:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   GatewayService (Orchestrator)     │  ← auth → quota → cache → dispatch
    ├─────────────────────────────────────┤
    │  UsageStore │ LimitResolver │ Cache │  ← one unit of work per operation
    │  AuditRecorder │ OpenAIProvider     │
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    The gateway keeps no mutable state between requests. Concurrency
    correctness lives in the database (atomic upserts), not in memory.
"""

__version__ = "1.0.0"
