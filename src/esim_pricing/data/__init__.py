"""Data subpackage - plan catalog and agent directory."""
