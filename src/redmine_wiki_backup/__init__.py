"""Back up Redmine wiki pages and attachments to a local directory tree."""

__version__ = "0.1.0"
