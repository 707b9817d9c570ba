"""Frontends - User interfaces for the gateway.

Submodules:
    cli/    Command-line interface
"""
