"""Redmine REST API access."""
