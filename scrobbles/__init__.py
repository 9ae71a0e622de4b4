"""scrobbles — incremental Last.fm listening-history sync service.

Subpackages:
    lastfm/  — Remote history source and canonical Record / ScanWatermark models
    storage/ — Embedded key-value store, per-user history and user registry
    sync/    — Incremental scanner and background scheduler
    routers/ — HTTP query and registration endpoints
"""
