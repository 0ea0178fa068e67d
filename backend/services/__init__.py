"""
DocFlow Hub - Services Package

Document workflow core: routing, state machine, authorization, audit trail,
and the storage / directory / notification collaborators it talks to.
"""
