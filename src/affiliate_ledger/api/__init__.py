"""HTTP API for the affiliate ledger."""
