"""Typed service-layer return models."""
