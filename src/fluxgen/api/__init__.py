"""Fluxgen — FastAPI REST API layer.

This package contains the FastAPI application, Pydantic request/response
models, and request validation.

Modules
-------
main
    FastAPI application with all route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request and response serialisation.
validation
    Ordered bounds checking for ``POST /api/generate`` payloads.
"""
