"""Shared utilities for SketchMatch."""
