"""CampaignPilot.

Guided campaign assembly for advertising platforms:
- platform-specific campaign identifier derivation + validation
- a gated, step-by-step wizard that freezes the identifier on submit
- thin catalog/persistence adapters (YAML, Postgres, in-memory)

This package is intentionally small and "boring" for readability.
"""

__version__ = "0.2.0"
