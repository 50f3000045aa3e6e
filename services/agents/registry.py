import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from models.internal import AgentConfig, AgentKind
from services.agents.analytics import AnalyticsAgent
from services.agents.authority import AuthorityAgent
from services.agents.base import Agent
from services.agents.campaign import CampaignAgent
from services.agents.content import ContentAgent

logger = logging.getLogger(__name__)

# Fixed at startup. Order is the order of UnifiedReport.per_agent.
AGENT_REGISTRY: List[Agent] = [
    AuthorityAgent(),
    CampaignAgent(),
    ContentAgent(),
    AnalyticsAgent(),
]

DEFAULT_AGENT_CONFIGS: Dict[AgentKind, AgentConfig] = {
    agent.kind: agent.default_config for agent in AGENT_REGISTRY
}


def _merge(base: AgentConfig, override: dict) -> AgentConfig:
    data = base.model_dump()
    for key, value in override.items():
        if key in ("weights", "thresholds") and isinstance(value, dict):
            data[key] = {**data[key], **value}
        elif key != "kind":
            data[key] = value
    return AgentConfig.model_validate(data)


def load_agent_configs(path: Optional[str] = None) -> Dict[AgentKind, AgentConfig]:
    """
    Defaults merged with an optional JSON override file shaped like
    {"authority": {"weights": {...}, "max_findings": 3}, ...}.

    Unknown agent names raise ValueError, as do invalid values.
    """
    configs = dict(DEFAULT_AGENT_CONFIGS)
    if not path:
        return configs

    overrides = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(overrides, dict):
        raise ValueError(f"Agent config file {path} must contain a JSON object")

    for name, override in overrides.items():
        try:
            kind = AgentKind(name)
        except ValueError:
            raise ValueError(f"Unknown agent '{name}' in {path}") from None
        if not isinstance(override, dict):
            raise ValueError(f"Config for agent '{name}' must be an object")
        configs[kind] = _merge(configs[kind], override)

    logger.info(f"Loaded agent config overrides for {', '.join(overrides)} from {path}")
    return configs
