"""
premium_freight/blueprints/actions/__init__.py

Blueprint package export for the e-mail link endpoints.
"""

from __future__ import annotations

from .routes import actions_bp  # noqa: F401
