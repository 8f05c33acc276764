"""Telemetry sync infrastructure for Mendwell.

Modules:
    dedup         — Deduplication logic (patient + metric + timestamp)
    ledger        — Append-only sync audit trail per patient
    offline_queue — Offline buffering and manual replay with bounded retries
"""
