"""Provisioning status — read-only projection over the provisioning ledger.

Modules
-------
projection
    ``StatusProjection`` reads the ledger and produces a frozen
    ``RunSnapshot`` for one run.
renderer
    ``StatusRenderer`` turns a ``RunSnapshot`` into Rich renderables.
"""
