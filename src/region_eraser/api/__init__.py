"""Region Eraser: FastAPI REST API layer.

Modules
-------
main
    FastAPI application with all route handlers, error handlers, the
    background sweep, and the ``main()`` CLI entry point.
models
    Pydantic models for API responses and the region form.
"""
