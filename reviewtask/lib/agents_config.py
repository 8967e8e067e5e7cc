"""
Analyzer command configuration.

Loads .pr-review/agents.yaml to decide which CLI command performs each
analysis stage. Without the file, the defaults below are used.

    stages:
      analyze: "claude -p --output-format json --model sonnet"

Templates may contain {prompt}. If present, the prompt is substituted as a
CLI argument; otherwise it is written to the command's stdin.
"""

import logging
import re
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

AGENTS_FILE_NAME = "agents.yaml"

DEFAULT_STAGE_COMMANDS = {
    "analyze": "claude -p --output-format json",
}

_PROMPT_PLACEHOLDER = "__PROMPT_PLACEHOLDER__"


@dataclass
class AgentsConfig:
    stages: dict[str, str] = field(default_factory=lambda: DEFAULT_STAGE_COMMANDS.copy())


def load_agents_config(storage_dir: Path | None) -> AgentsConfig:
    """Load agents.yaml from the storage directory, falling back to defaults."""
    if storage_dir is None:
        return AgentsConfig()

    config_path = storage_dir / AGENTS_FILE_NAME
    if not config_path.exists():
        return AgentsConfig()

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return AgentsConfig()

    stages = DEFAULT_STAGE_COMMANDS.copy()
    if isinstance(data, dict) and isinstance(data.get("stages"), dict):
        for stage, command in data["stages"].items():
            if isinstance(command, str) and command.strip():
                stages[stage] = command
            else:
                logger.warning(f"Ignoring invalid command for stage '{stage}' in {config_path}")
    return AgentsConfig(stages=stages)


@dataclass
class StageCommand:
    cmd: list[str]
    prompt_via_stdin: bool
    output_format: str | None  # "json" if --output-format json, else None

    def get_stdin_input(self, prompt: str) -> str | None:
        return prompt if self.prompt_via_stdin else None


def get_stage_command(
    config: AgentsConfig,
    stage: str,
    context: dict[str, str] | None = None,
) -> StageCommand:
    """Build the argv for a stage.

    Raises:
        ValueError: If the stage is unknown

    Example:
        >>> get_stage_command(AgentsConfig(), "analyze", {"prompt": "hi"}).cmd
        ['claude', '-p', '--output-format', 'json']
    """
    if stage not in config.stages:
        raise ValueError(f"Unknown stage: {stage}")

    template = config.stages[stage]
    prompt_via_stdin = "{prompt}" not in template

    output_format = None
    parts = shlex.split(template.replace("{prompt}", "X"))
    for i, part in enumerate(parts):
        if part == "--output-format" and i + 1 < len(parts):
            output_format = parts[i + 1]
            break
        if part.startswith("--output-format="):
            output_format = part.split("=", 1)[1]
            break

    prompt_value = None
    if context and "prompt" in context:
        prompt_value = context["prompt"]
        template = template.replace("{prompt}", _PROMPT_PLACEHOLDER)

    if context:
        for key, value in context.items():
            if key != "prompt":
                template = template.replace(f"{{{key}}}", value)

    remaining = re.findall(r'\{(\w+)\}', template)
    if remaining:
        logger.error(f"Stage '{stage}' has unsubstituted variables: {remaining}")

    cmd = shlex.split(template)
    if prompt_value is not None:
        cmd = [prompt_value if arg == _PROMPT_PLACEHOLDER else arg for arg in cmd]

    return StageCommand(cmd=cmd, prompt_via_stdin=prompt_via_stdin, output_format=output_format)


def get_stage_binary(config: AgentsConfig, stage: str) -> str:
    if stage not in config.stages:
        raise ValueError(f"Unknown stage: {stage}")
    parts = shlex.split(config.stages[stage])
    return parts[0] if parts else ""


def check_binary_available(binary: str) -> bool:
    return shutil.which(binary) is not None


@dataclass
class BinaryCheckResult:
    ok: bool
    missing_binary: str | None = None
    error_message: str | None = None


def validate_stage_binary(config: AgentsConfig, stage: str = "analyze") -> BinaryCheckResult:
    """Check that the binary a stage runs is on PATH."""
    binary = get_stage_binary(config, stage)
    if check_binary_available(binary):
        return BinaryCheckResult(ok=True)

    error_lines = [
        f"Required tool '{binary}' is not installed.",
        "",
        "To fix this, either:",
        f"  1. Install {binary}",
        f"  2. Point the {stage} stage at another CLI in .pr-review/{AGENTS_FILE_NAME}:",
        "",
        "     stages:",
        f"       {stage}: claude -p --output-format json",
    ]
    return BinaryCheckResult(ok=False, missing_binary=binary, error_message="\n".join(error_lines))
