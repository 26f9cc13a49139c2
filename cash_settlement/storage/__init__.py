"""SQLite settlement ledger."""
