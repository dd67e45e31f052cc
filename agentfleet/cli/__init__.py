"""Command-line interface for agentfleet."""
