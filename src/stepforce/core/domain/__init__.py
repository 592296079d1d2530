"""Domain layer: ledger, placeholder resolution, approval and execution."""
