"""Configuration for Mastermind.

Config discovery (first match wins):
  1. explicit ``path`` argument
  2. ``./mastermind.yaml``
  3. ``~/.config/mastermind/config.yaml``
  4. Built-in defaults
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

_logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash-exp"
DEFAULT_REGION = "us-central1"

# Loop ceilings below this are raised to it
MIN_ITERATIONS = 15

DEFAULT_SYSTEM_INSTRUCTION = """\
You are "Mastermind", a highly capable AI assistant for Obsidian.
You have access to the user's notes and knowledge vault.
Be concise, professional, and insightful.
Always use the provided context to answer questions if available."""


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

CAPABILITIES = ("read", "write", "delete", "network", "shell")


@dataclass
class PermissionSpec:
    """Per-capability enablement flags for tool providers."""

    read: bool = True
    write: bool = True
    delete: bool = False
    network: bool = True
    shell: bool = False

    def is_enabled(self, capability: str) -> bool:
        return bool(getattr(self, capability, False))


@dataclass
class ChatConfig:
    """Read-only settings snapshot for one chat invocation."""

    model_id: str = DEFAULT_MODEL
    location: str = DEFAULT_REGION
    temperature: float = 0.7
    max_output_tokens: int = 4096
    system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION
    custom_instructions: str = ""
    permissions: PermissionSpec = field(default_factory=PermissionSpec)

    # Agent loop
    max_iterations: int = MIN_ITERATIONS
    max_duration: float = 0  # seconds, 0 = unlimited

    # Fallback target for not-found / bad-request failures
    fallback_model: str = DEFAULT_MODEL
    fallback_region: str = DEFAULT_REGION

    def __post_init__(self) -> None:
        if self.max_iterations < MIN_ITERATIONS:
            _logger.warning(
                "max_iterations=%d is below the minimum, using %d",
                self.max_iterations, MIN_ITERATIONS,
            )
            self.max_iterations = MIN_ITERATIONS


@dataclass
class MastermindConfig:
    """Top-level config."""

    # Service account key: a path to the JSON file, or the JSON itself
    service_account_file: str = ""
    service_account_json: str = ""

    request_timeout: float = 120
    chat: ChatConfig = field(default_factory=ChatConfig)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./mastermind.yaml"),
    Path.home() / ".config" / "mastermind" / "config.yaml",
]


def _parse_permissions(raw: dict[str, Any] | None) -> PermissionSpec:
    if not raw:
        return PermissionSpec()
    values = {k: bool(v) for k, v in raw.items() if k in CAPABILITIES}
    unknown = sorted(set(raw) - set(CAPABILITIES))
    if unknown:
        _logger.warning("Ignoring unknown permissions: %s", ", ".join(unknown))
    return PermissionSpec(**values)


def _parse_chat(raw: dict[str, Any] | None) -> ChatConfig:
    if not raw:
        return ChatConfig()
    base: dict[str, Any] = {}
    for k, v in raw.items():
        if v is None or k == "permissions":
            continue
        if k in ChatConfig.__dataclass_fields__:
            base[k] = v
    base["permissions"] = _parse_permissions(raw.get("permissions"))
    return ChatConfig(**base)


def load_config(path: str | Path | None = None) -> MastermindConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    MastermindConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return MastermindConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return MastermindConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    return MastermindConfig(
        service_account_file=raw.get("service_account_file", ""),
        service_account_json=raw.get("service_account_json", ""),
        request_timeout=raw.get("request_timeout", 120),
        chat=_parse_chat(raw.get("chat")),
    )


def read_service_account(config: MastermindConfig) -> str:
    """Return the service account JSON text named by *config*.

    An inline ``service_account_json`` wins over ``service_account_file``.
    Returns an empty string when neither is set.
    """
    if config.service_account_json:
        return config.service_account_json
    if config.service_account_file:
        return Path(config.service_account_file).expanduser().read_text()
    return ""
