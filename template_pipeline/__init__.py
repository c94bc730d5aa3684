"""Prompt-to-template pipeline: parse, build, package and import UI components."""

__version__ = "0.1.0"
