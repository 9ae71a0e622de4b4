"""History sync infrastructure.

Modules:
    scanner   — Incremental page cursor and watermark boundary filter
    scheduler — Background sync loop (sequential per user, fault-isolated)
    dedup     — In-scan duplicate suppression
"""
