"""Persisted record shapes."""
