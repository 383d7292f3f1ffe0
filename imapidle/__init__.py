"""
IMAP IDLE (RFC 2177) support for a small synchronous IMAP client.
"""

__version__ = "0.1.0"
