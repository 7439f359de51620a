"""Tool Schema 定义。

包含工具分组、工具描述、参数 schema 和 schema 创建函数。
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "SUPPORTED_TOOLS",
    "TOOL_GROUP_OF",
    "TOOL_DESCRIPTIONS",
    "create_tool_schema",
]

# 工具 → 工具组（DXM_ENABLE / DXM_DISABLE 按组开关）
TOOL_GROUP_OF = {
    "dx_run": "run",
    "execute_anonymous": "apex",
    "run_apex_test": "apex",
    "get_debug_log": "apex",
    "org_list": "org",
    "org_display": "org",
    "describe_global": "org",
    "deploy_source": "source",
    "retrieve_source": "source",
    "delete_source": "source",
    "deploy_report": "source",
    "bulk_upsert": "bulk",
    "bulk_delete": "bulk",
    "bulk_status": "bulk",
}

# 支持的工具列表（保持 list_tools 的输出顺序）
SUPPORTED_TOOLS = list(TOOL_GROUP_OF)

# 工具描述
TOOL_DESCRIPTIONS = {
    "dx_run": """Run an arbitrary Salesforce DX subcommand and return its JSON result.

The configured prefix (default "force:") is prepended and --json is appended,
so pass e.g. "org:display" or "data:soql:query -q SELECT+Id+FROM+Account".

ARGUMENTS WITH SPACES:
- `command` is split on whitespace.
- Put values that contain spaces (file paths, queries) into `arguments`;
  each item is passed to the CLI as a single argument.""",

    "execute_anonymous": """Execute anonymous Apex against the connected org.

Returns the debug log on success. Compile errors are reported with line
and column; runtime exceptions include the message and stack trace.""",

    "run_apex_test": """Run an Apex test class or a single test method synchronously (waits up to 3 minutes).

Pass `name` as "MyTest" with target "class", or "MyTest.testMethod" with target "method".""",

    "get_debug_log": """Fetch an Apex debug log. Without `log_id` the most recent log is returned.""",

    "org_list": """List the orgs the CLI is authenticated to (non-scratch and scratch). Access tokens are omitted.""",

    "org_display": """Show details of an org (defaults to the connected org). The access token is omitted.""",

    "describe_global": """List SObject names in the connected org, filtered by category (ALL, STANDARD, CUSTOM).""",

    "deploy_source": """Deploy source-format metadata: a path (file or directory) or a package.xml manifest.""",

    "retrieve_source": """Retrieve source-format metadata described by a package.xml manifest.""",

    "delete_source": """Delete source-format metadata at a path from the connected org (and locally).""",

    "deploy_report": """Report the status of a deployment.

With `wait=true` the deployment is polled until it finishes and progress
notifications are sent while waiting. Polling stops on the first failed
status check; the last known status is returned in that case.""",

    "bulk_upsert": """Upsert records from a CSV file with the Bulk API.

Returns the created batches. With `wait=true` every batch is polled until it
completes, fails or is not processed.""",

    "bulk_delete": """Delete records listed in a CSV file (Id column) with the Bulk API.

Returns the created batches. With `wait=true` every batch is polled until done.""",

    "bulk_status": """Report the status of a bulk job or one of its batches.

With `wait=true` (requires `batch_id`) the batch is polled until done.""",
}


# 末尾通用参数
TAIL_PROPERTIES: dict[str, Any] = {
    "target_username": {
        "type": "string",
        "description": "Org username or alias to use instead of the connected org (DXM_TARGET_USERNAME).",
    },
    "debug": {
        "type": "boolean",
        "description": "Include timing and exit details in the response. Defaults to DXM_DEBUG.",
    },
}

# 轮询参数（支持 wait 的工具）
WAIT_PROPERTIES: dict[str, Any] = {
    "wait": {
        "type": "boolean",
        "default": False,
        "description": "Poll the job until it reaches a terminal state.",
    },
    "interval": {
        "type": "number",
        "minimum": 0.1,
        "maximum": 60,
        "description": "Seconds between status checks. Defaults to DXM_POLL_INTERVAL.",
    },
}

PATH_PROPERTY = {
    "type": "string",
    "description": "File or directory path, absolute or relative to the workspace. Spaces are allowed.",
}

# 工具特有参数
TOOL_PROPERTIES: dict[str, dict[str, Any]] = {
    "dx_run": {
        "command": {
            "type": "string",
            "description": "Subcommand and flags, without the prefix, e.g. \"org:display\".",
        },
        "arguments": {
            "type": "array",
            "items": {"type": "string"},
            "default": [],
            "description": "Extra arguments appended as-is; each may contain spaces.",
        },
        "use_target_username": {
            "type": "boolean",
            "default": True,
            "description": "Append --targetusername for the connected org.",
        },
        "tolerate_nonzero_exit": {
            "type": "boolean",
            "default": False,
            "description": "Return the result even when the CLI reports failure.",
        },
    },
    "execute_anonymous": {
        "code": {
            "type": "string",
            "description": "Apex source to execute.",
        },
    },
    "run_apex_test": {
        "name": {
            "type": "string",
            "description": "Test class name, or Class.method for a single method.",
        },
        "target": {
            "type": "string",
            "enum": ["class", "method"],
            "default": "class",
            "description": "Whether `name` is a class or a method.",
        },
    },
    "get_debug_log": {
        "log_id": {
            "type": "string",
            "description": "Debug log ID. Omit for the most recent log.",
        },
    },
    "org_list": {},
    "org_display": {
        "username": {
            "type": "string",
            "description": "Org username or alias. Defaults to the connected org.",
        },
    },
    "describe_global": {
        "category": {
            "type": "string",
            "enum": ["ALL", "STANDARD", "CUSTOM"],
            "default": "ALL",
            "description": "SObject category filter.",
        },
    },
    "deploy_source": {
        "path": PATH_PROPERTY,
        "package_xml": {
            "type": "boolean",
            "default": False,
            "description": "Treat `path` as a package.xml manifest.",
        },
    },
    "retrieve_source": {
        "manifest": {
            "type": "string",
            "description": "Path to a package.xml manifest.",
        },
    },
    "delete_source": {
        "path": PATH_PROPERTY,
    },
    "deploy_report": {
        "deploy_id": {
            "type": "string",
            "description": "Deployment ID (0Af...).",
        },
    },
    "bulk_upsert": {
        "sobject": {
            "type": "string",
            "description": "SObject API name, e.g. Account.",
        },
        "csv_file": {
            "type": "string",
            "description": "Path to the CSV file with the records.",
        },
        "external_id": {
            "type": "string",
            "default": "Id",
            "description": "External ID field used to match records.",
        },
    },
    "bulk_delete": {
        "sobject": {
            "type": "string",
            "description": "SObject API name, e.g. Account.",
        },
        "csv_file": {
            "type": "string",
            "description": "Path to the CSV file with an Id column.",
        },
    },
    "bulk_status": {
        "job_id": {
            "type": "string",
            "description": "Bulk job ID (750...).",
        },
        "batch_id": {
            "type": "string",
            "description": "Batch ID (751...). Required when wait=true.",
        },
    },
}

# 必填参数
REQUIRED_ARGUMENTS: dict[str, list[str]] = {
    "dx_run": ["command"],
    "execute_anonymous": ["code"],
    "run_apex_test": ["name"],
    "deploy_source": ["path"],
    "retrieve_source": ["manifest"],
    "delete_source": ["path"],
    "deploy_report": ["deploy_id"],
    "bulk_upsert": ["sobject", "csv_file"],
    "bulk_delete": ["sobject", "csv_file"],
    "bulk_status": ["job_id"],
}

# 支持 wait 的工具
WAIT_SUPPORTED_TOOLS = {"deploy_report", "bulk_upsert", "bulk_delete", "bulk_status"}


def create_tool_schema(tool: str) -> dict[str, Any]:
    """创建工具的 JSON Schema。

    参数顺序：
    1. 工具特有参数（必填在前）
    2. wait / interval（仅作业类工具）
    3. target_username, debug (末尾)
    """
    if tool not in TOOL_PROPERTIES:
        raise KeyError(f"Unknown tool '{tool}'")

    properties: dict[str, Any] = {}
    properties.update(TOOL_PROPERTIES[tool])
    if tool in WAIT_SUPPORTED_TOOLS:
        properties.update(WAIT_PROPERTIES)
    properties.update(TAIL_PROPERTIES)

    return {
        "type": "object",
        "properties": properties,
        "required": list(REQUIRED_ARGUMENTS.get(tool, [])),
    }
