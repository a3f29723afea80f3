"""Simulated memory, free-list heap allocators, an allocation benchmark and trace timeline tools."""

__version__ = "0.1.0"