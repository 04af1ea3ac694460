"""qbank REST API package.

Provides the FastAPI router for task submission, queue inspection and
article browsing/search.

Mount point: /api/v1/
"""
