"""Integration adapters for external systems (Google Sheets, S3).

Keep these modules small and testable:
- No FastAPI request/response objects
- No outbox/worker concerns
- Pure IO + parsing helpers
"""
