"""
ARC Workflow Engine: request lifecycle core.

Design: DESIGN.md

This package is the engine core. All community-specific settings (board
membership, approval thresholds, contact directory, tick interval) come from
the project's .arc/config.yaml. The engine itself is transport-agnostic:
notifications leave through a gateway and state lives behind a RequestStore.
"""
