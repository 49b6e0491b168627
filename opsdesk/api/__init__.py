"""HTTP surface over the reconciliation core."""
