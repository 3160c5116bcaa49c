"""
Devloop - disciplined issue lifecycle and Test-Commit-Revert tooling.

Moves issues through gated lifecycle stages and only commits implementation
work when tests and coverage pass.
"""

__version__ = "0.4.0"
__all__ = ["__version__"]
