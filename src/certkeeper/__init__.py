"""certkeeper: automated TLS certificate lifecycle management.

Acquires certificates from an ACME authority, selects the right one per
incoming TLS connection, persists them to any number of repositories and
renews them before they expire.
"""

__version__ = "1.0.0"
