"""DX CLI MCP - Salesforce DX CLI MCP 服务器。

环境变量:
    DXM_CLI: CLI 可执行文件 (默认 sfdx)
    DXM_TARGET_USERNAME: 当前连接的 org
    DXM_ENABLE / DXM_DISABLE: 工具组开关

用法:
    uvx dx-cli-mcp
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
