"""
Integration tests for network export: rendering, re-import and exact
reproduction of the in-memory classifier.
"""
