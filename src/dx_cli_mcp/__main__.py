"""DX CLI MCP 入口点。

支持: python -m dx_cli_mcp
"""

from .app import main

if __name__ == "__main__":
    main()
