"""Orbit Compliance Engine: regulatory applicability, status ledger, scoring and audit.

Determines which provisions of the EU Space Act and NIS2 bind a space
operator, tracks compliance status per provision, aggregates scores, reports
cross-framework overlaps and keeps a hash-chained audit trail of every
state change.
"""

__version__ = "0.1.0"
