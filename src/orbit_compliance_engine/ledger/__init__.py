"""Status ledger, scoring, overlap detection and the audit hash chain.

Modules:
- records: Assessment, RequirementStatus, AuditEntry and ComplianceState
- audit_chain: entry hashing and chain verification
- scoring: per-domain and overall scores
- overlap: cross-domain overlap report
"""
