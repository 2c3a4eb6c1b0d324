"""Rules subpackage - parsing of raw pricing-rule tables."""
