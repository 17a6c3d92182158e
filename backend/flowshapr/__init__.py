"""Flowshapr: compile visual AI flows to Python and run them in an execution daemon."""

__version__ = "0.1.0"
