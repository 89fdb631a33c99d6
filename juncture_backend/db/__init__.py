"""Persistence layer: engine/session setup and ORM models."""
