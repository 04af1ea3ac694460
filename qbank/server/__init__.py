"""qbank HTTP server package.

Entry point:
    uvicorn qbank.server.main:app --host 0.0.0.0 --port 8000
"""
