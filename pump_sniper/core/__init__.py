"""Trading core: scanner, position store, monitor, venues."""
