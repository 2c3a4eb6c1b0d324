"""HTTP surface for pricing, rule management and agent overrides."""
