"""
x402-gate: pay-per-call HTTP payments for autonomous agents
"""

__version__ = "0.1.0"
