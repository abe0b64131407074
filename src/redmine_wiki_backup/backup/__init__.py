"""Backup orchestration."""
