"""
certchain — X.509 chain resolution, trust validation and revocation engine.

Resolves missing intermediates via AIA, validates signature linkage and
trust anchoring against a root pool, and determines revocation status via
OCSP with CRL fallback, backed by a shared, bounded CRL cache.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
