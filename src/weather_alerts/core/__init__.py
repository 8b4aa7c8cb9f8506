"""Core business logic: rule evaluation, message composition, provider clients and data models.

This module is framework-agnostic. It has no dependency on MCP, FastMCP,
SQLAlchemy, or any server framework.
"""
