"""Governance Ledger: multisig vote reconciliation and team workflow."""

__version__ = "1.0.0"
