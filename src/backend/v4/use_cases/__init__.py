"""Use-case level logic for keeping receipt mirrors in sync.

These modules implement the sync outbox, the enqueue path, the drain worker
and mirror position tracking on top of the integrations (Google Sheets, S3)
and the primary store.

They should be:
- free of web/framework code
- driven by an injectable clock
- unit-testable against fakes
"""
