"""Core layer: ORM models, store protocols and the ComplianceService facade."""
