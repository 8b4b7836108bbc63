"""MCP server and serial protocol stack for Maxon EPOS2 motion controllers."""

__version__ = "0.1.0"
