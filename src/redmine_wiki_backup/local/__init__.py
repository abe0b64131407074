"""Local filesystem side of the backup."""
