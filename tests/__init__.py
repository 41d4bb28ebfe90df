"""
Trail Tiles test suite

Structure:
- unit/: component tests (coordinate math, store, fetcher, pipeline, cache API)
- integration/: HTTP-level tests against the FastAPI app with a faked upstream
- helpers.py: fake requests session / fetchers shared by both
"""
