# flake8: noqa
"""
Single-user chat relay for configurable LLM HTTP endpoints.

Modules:
    settings:  Configuration loading and persistence helpers.
    storage:   Whole-document JSON record stores, chat messages and history.
    providers: Provider registry, validation and credential resolution.
    llm:       Provider HTTP client, response extractors and the chat relay.
    templates: HTML rendering for the single chat page.
    main:      FastAPI application factory wiring everything together.

Run with ``python -m chatrelay`` or ``uvicorn --factory chatrelay.main:create_app``.
"""
