# app/l402/__init__.py
"""
L402 Payment Protocol Integration Module.

This module implements the server side of L402: access to a resource is
gated behind a Lightning invoice, and paid clients prove payment with the
invoice preimage.

Key components:
- challenge: invoice + credential issuance
- verifier: credential resolution, settlement check, proof comparison
- store: credential and settlement stores
- backend / simulator: payment backend contract and an in-memory node
- middleware: FastAPI middleware guarding protected endpoints
- ratelimit: per-IP limit on challenge issuance
- audit: JSON-lines audit log

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
