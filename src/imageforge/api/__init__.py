"""imageforge — FastAPI REST API layer.

This package contains the FastAPI application, the Pydantic request models,
and the dependency that applies the rate governor to expensive routes.

Modules
-------
main
    FastAPI application with all route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request validation.
rate_limiting
    ``enforce_rate_limit`` dependency and ``X-RateLimit-*`` headers.
"""
