"""Fitbit sync infrastructure for SyncMyFit.

Modules:
    orchestrator — Concurrent fetch fan-out, aggregation and fan-in
    writer       — Same-day, same-origin replacement of health samples
    status       — Last successful sync time and transient result flag
"""
