"""Object store adapters and typed ledger documents."""
