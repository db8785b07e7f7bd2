"""Pod group reconciliation operator."""
