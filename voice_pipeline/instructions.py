"""
Persona instructions for reply generation.

Supports scenario-based configuration:
- Different system prompts per scenario
- A fallback utterance per scenario, spoken when the reply generator returns nothing
- Scenario selection via explicit name or AGENT_SCENARIO env var

Implementation note:
- Scenarios are stored as YAML (preferred) or JSON.
- We use PyYAML's safe_load, which can parse both YAML and pure JSON.
"""

import os
from pathlib import Path
from typing import Optional, Dict, Any

import yaml

from .config import DEFAULT_FALLBACK_REPLY


AGENT_INSTRUCTIONS = """
You are a friendly virtual avatar speaking naturally in conversation.

Keep replies short (one to three sentences) and easy to say out loud.
Do not use lists, markdown, or emoji; your words are spoken, not read.
If something is unclear, ask a short clarifying question.
""".strip()


def _get_scenarios_dir() -> Path:
    return Path(__file__).parent / "scenarios"


def _load_file(path: Path) -> Dict[str, Any]:
    """Load a scenario file (YAML safe_load also parses pure JSON)."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Scenario file {path} must contain a mapping at top-level")
        return data


def load_scenario(scenario_name: str) -> Dict[str, Any]:
    """
    Load scenario configuration from YAML or JSON file.

    Resolution order:
    1) <name>.yaml / <name>.yml / <name>.json
    2) default.yaml / default.yml / default.json
    3) built-in default
    """
    scenarios_dir = _get_scenarios_dir()

    for name in (scenario_name, "default"):
        for suffix in (".yaml", ".yml", ".json"):
            candidate = scenarios_dir / f"{name}{suffix}"
            if candidate.exists():
                return _load_file(candidate)

    return {
        "name": "default",
        "prompt": AGENT_INSTRUCTIONS,
        "fallback_reply": DEFAULT_FALLBACK_REPLY,
    }


def get_scenario(scenario: Optional[str] = None) -> Dict[str, Any]:
    """
    Priority:
    1. explicit scenario name
    2. AGENT_SCENARIO environment variable
    3. "default"
    """
    scenario_name = scenario or os.getenv("AGENT_SCENARIO", "default")
    return load_scenario(scenario_name)


def get_instructions(scenario: Optional[str] = None, custom_instructions: Optional[str] = None) -> str:
    """System prompt for the given scenario, with optional extra instructions appended."""
    data = get_scenario(scenario)
    prompt = (data.get("prompt") or AGENT_INSTRUCTIONS).strip()

    if custom_instructions:
        return f"{prompt}\n\n{custom_instructions}"
    return prompt


def get_fallback_reply(scenario: Optional[str] = None) -> str:
    """Utterance used when the reply generator returns an empty reply."""
    data = get_scenario(scenario)
    return (data.get("fallback_reply") or DEFAULT_FALLBACK_REPLY).strip()
