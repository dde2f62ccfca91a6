"""
Standalone execution context for workflow nodes.

Nodes only rely on four methods of ctx: get_secret, get_config,
report_input and report_output. Inside the workflow engine the engine
supplies ctx; NodeContext lets the nodes run on their own (scripts, tests).
"""
import os
from typing import Any, Dict, List, Optional

import structlog

from llm_gateway import GatewayClient

logger = structlog.get_logger()


class NodeContext:
    """
    Minimal ctx implementation.

    Secrets come from an explicit dict first, then the environment. Reports
    are logged and kept on the instance for inspection.
    """

    def __init__(
        self,
        secrets: Optional[Dict[str, str]] = None,
        config: Optional[Dict[str, Any]] = None,
        gateway: Optional[GatewayClient] = None,
        use_env: bool = True,
    ):
        """
        Args:
            secrets: Secret values (PLATO_BASE_URL, PLATO_API_KEY, ...)
            config: Workflow config values (style prompts, inline_image_style, ...)
            gateway: Pre-built client; nodes build their own from secrets when None
            use_env: Fall back to os.environ for secrets not in the dict
        """
        self._secrets = dict(secrets or {})
        self._config = dict(config or {})
        self._use_env = use_env
        self.gateway = gateway
        self.inputs: List[dict] = []
        self.outputs: List[dict] = []

    def get_secret(self, name: str) -> Optional[str]:
        if name in self._secrets:
            return self._secrets[name]
        if self._use_env:
            return os.environ.get(name)
        return None

    def get_config(self, name: str) -> Any:
        return self._config.get(name)

    def report_input(self, data: dict) -> None:
        self.inputs.append(data)
        logger.debug("node_input", **data)

    def report_output(self, data: dict) -> None:
        self.outputs.append(data)
        logger.debug("node_output", **data)
