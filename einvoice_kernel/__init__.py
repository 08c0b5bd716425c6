"""
e-Invoice Kernel - LHDN MyInvois integration core

Token lifecycle and outbound submission pipeline for the Pinnacle
e-Invoice portal:
- Three-tier access token cache (memory, file, audit history)
- OAuth2 client-credentials acquisition with single-flight refresh
- Document submission with bounded, centralised backoff
- Durable submission status tracking via an explicit state machine
"""

__version__ = "0.1.0"
