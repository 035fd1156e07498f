"""Persistence layer: document store backends and record models."""
