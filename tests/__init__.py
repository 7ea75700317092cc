"""
Test suite for the listing import portal.

Run all tests: pytest
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_post_store.py -v
"""
