"""
Claim Verifier: trust decisions for submitted land claims.

Architecture: Pre-flight prefilter → Concurrent evidence agents → Weighted aggregation → Guarded status write
Philosophy:  Agents gather evidence. Only the state machine touches the claim.
"""

__version__ = "1.0.0"
