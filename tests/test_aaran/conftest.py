"""Unit tests for the Aaran voice-command pipeline.

These tests use **mocks** for all external dependencies (Redis, Weaviate,
OpenAI embeddings, Langfuse) and inject fake clocks where timing matters,
so they run fast, offline, and deterministically.

Run all tests::

    uv run pytest -sv tests/test_aaran/

Run a single file::

    uv run pytest -sv tests/test_aaran/test_orchestrator.py

Organisation
------------
- ``test_intent_classifier.py``    – rule-based scoring and context adjustment
- ``test_knowledge_retrieval.py``  – KB ranking, fallback, cache and live data
- ``test_response_generator.py``   – templated replies and phrasing helpers
- ``test_followups.py``            – reading "yes"/"no"/"tell me more" answers
- ``test_conversation_memory.py``  – learning, personalisation, profile import/export
- ``test_memory_stores.py``        – in-memory, JSON-file, Redis and vector stores (mocked)
- ``test_session_store.py``        – LRU and inactivity expiry
- ``test_dashboard_controller.py`` – validation, confirmation, animation, rollback
- ``test_orchestrator.py``         – end-to-end voice turns (tracing disabled)
"""
