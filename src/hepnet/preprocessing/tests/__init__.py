"""
Integration tests for the preprocessing pipeline.
"""
