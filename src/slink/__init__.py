"""slink: recipient-specific, unguessable share links for static file serving."""

__version__ = '0.1.0'
