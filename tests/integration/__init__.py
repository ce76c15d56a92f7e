"""Integration tests for metapipe.

These tests drive whole runs (staging, stages, publish, cleanup) against
stand-in tools and a temporary durable tree.

Run with: pytest tests/integration/ -v
"""
