"""Scenario driver."""

from .sim import ISim, Sim

__all__ = ["ISim", "Sim"]
