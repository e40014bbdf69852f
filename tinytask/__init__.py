"""
TinyTask - a minimal task tracker for LLM agents, served over MCP.
"""
__version__ = "1.0.0"
