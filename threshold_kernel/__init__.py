"""
Threshold Kernel - dual-control governance for risk thresholds

A transactional, append-only policy engine with:
- Effective threshold resolution (pair -> category -> hardcoded floor)
- Magnitude-gated change approval
- Write-once request lifecycle with lazy and swept expiry
- Hash-chained audit trail with idempotent emission
- Role-targeted notifications
"""

__version__ = "0.1.0"
