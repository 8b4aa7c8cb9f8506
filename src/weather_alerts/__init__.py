"""Weather Alerts MCP Server.

Current weather and NASA DONKI space weather, per-user alert rules, and a
scheduled check that emails users when their thresholds are crossed.
"""

__version__ = "0.1.0"
