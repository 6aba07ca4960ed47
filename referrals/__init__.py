"""Blueprints de referidos y enlaces cortos."""
