"""chanbot - a tool-calling chat agent for busy channels."""

__version__ = "0.1.0"
