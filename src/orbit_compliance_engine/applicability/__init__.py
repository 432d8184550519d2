"""Classification and applicability for regulated space entities.

Modules:
- profile: validated entity Profile
- classification: size tier, constellation tier, light regime, NIS2 entity class
- predicates: the single applicability predicate interpreter
- resolver: applicable provision set per domain
"""
