"""
Shared test fixtures and fakes.
"""
