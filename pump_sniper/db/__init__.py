"""sqlite persistence: fill ledger, token registry, alerts."""
