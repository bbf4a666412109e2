"""clawmgr: MCP server manager for the OpenClaw agent runtime."""

__version__ = "0.1.0"
