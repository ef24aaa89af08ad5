"""
Business logic services.

- export: export requests, pipeline and archive builder
- retention: retention policies, sweeps and project purge
- analytics: in-process lifecycle event buffer
- email_service: export-ready notifications
"""
