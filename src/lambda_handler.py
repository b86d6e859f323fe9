"""AWS Lambda handler for direct order command invocations.

Front ends (the interactive CLI, scheduled jobs) invoke this function with a
plain command payload:

    {"operation": "place_first_item", "caller_login": "alice",
     "arguments": {"item_name": "Latte"}}

and receive either {"ok": true, "result": ...} or
{"ok": false, "error": {"kind": ..., "message": ...}}.
"""

import asyncio
import logging
import os
from typing import Any

from lambda_dependencies import get_command_handler, initialize_lambda_environment

# Initialize Lambda environment during cold start (skip in test mode)
if os.getenv("ENVIRONMENT") != "test":
    initialize_lambda_environment()

logger = logging.getLogger(__name__)


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Lambda entry point for order commands.

    Args:
        event: The command payload
        context: The Lambda context object

    Returns:
        Response dict with ok flag and result or error
    """
    logger.info(f"Received Lambda invocation, request_id: {context.aws_request_id}")

    try:
        handler = get_command_handler()
        return asyncio.run(handler.handle_event(event))

    except Exception as e:
        logger.exception(f"Unhandled error in Lambda handler: {e}")
        return {
            "ok": False,
            "error": {"kind": "internal_error", "message": f"Internal server error: {str(e)}"},
        }
