"""Domain services for the diesel/urea ledger."""
