"""
Campaign Kernel - consistency core for the campaign marketplace.

Keeps two systems of record coherent:
- Off-chain submission store (display, moderation, visibility)
- On-chain campaign ledger (funds and mint state)

Provides:
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging
- Submission and audit persistence with compare-and-set updates
- Read-only ledger projections joined on metadata URI
"""

__version__ = "0.1.0"
