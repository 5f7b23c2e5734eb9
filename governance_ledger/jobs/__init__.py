"""
Background Jobs for the Governance Ledger.

- passes: vote reconciliation, the voting-deadline sweep and the
  agreement-transition sweep
"""

from .passes import run_agreement_pass, run_cycle, run_deadline_sweep, run_reconciliation_pass

__all__ = ["run_agreement_pass", "run_cycle", "run_deadline_sweep", "run_reconciliation_pass"]
