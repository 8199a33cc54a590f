"""Mentor conversation engine: intake, streaming, extraction and dispatch."""
