"""
Reddit Age Verifier - account age lookup and annotation engine

This package extracts Reddit user handles from page content, resolves each
handle's account age through an external account-history API (with caching,
rate limiting and retry/backoff) and hands the results to an annotation sink.
"""

__version__ = "1.13.0"
