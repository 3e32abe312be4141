"""Hotel services marketplace API: loyalty ledger, booking pricing and lifecycle."""
