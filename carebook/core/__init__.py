"""Persistence layer: ORM models, engine setup and repositories."""
