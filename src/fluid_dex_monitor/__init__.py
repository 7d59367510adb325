"""Fluid DEX price monitor - sUSDe pool price observation and change detection."""

__version__ = "0.1.0"
