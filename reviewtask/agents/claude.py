"""
Claude analyzer for reviewtask.

Sends one batch of review comments to the configured CLI (claude by default,
see agents.yaml) and returns the draft task entries it produced. Nothing
here judges the drafts; TaskGenerator validates them.
"""

import json
import logging
import os
import subprocess
import time
from pathlib import Path

from reviewtask.lib.agents_config import AgentsConfig, get_stage_command
from reviewtask.lib.config import AnalysisSettings
from reviewtask.lib.history import format_comments
from reviewtask.lib.json_repair import JSONRepairError, parse_json_response
from reviewtask.lib.prompts import render_prompt
from reviewtask.lib.stats import AnalysisStats, record_analysis_stats
from reviewtask.lib.types import ReviewComment
from reviewtask.tasks.models import now_iso
from reviewtask.workflow.generator import AnalysisError

logger = logging.getLogger(__name__)

NITPICK_PROCESS = (
    "7. Treat nitpick and style suggestions as real tasks with priority low, "
    "even under a header like \"Actionable comments posted: 0\".\n"
)
NITPICK_SKIP = "7. Skip nitpicks and purely stylistic suggestions.\n"


def extract_task_entries(data) -> list:
    """Normalize the shapes models return into a flat list of entries.

    Accepted: a list of entries, {"tasks": [...]}, and grouped entries of
    the form {"source_comment_id": 1, "tasks": [{...}, ...]}.
    """
    if isinstance(data, dict):
        if isinstance(data.get("tasks"), list):
            data = data["tasks"]
        else:
            raise AnalysisError("Analyzer response is an object without a 'tasks' list")
    if not isinstance(data, list):
        raise AnalysisError(f"Analyzer response is {type(data).__name__}, expected a list")

    entries = []
    for item in data:
        if isinstance(item, dict) and isinstance(item.get("tasks"), list) and "description" not in item:
            inherited = {k: v for k, v in item.items() if k != "tasks"}
            for sub in item["tasks"]:
                entries.append({**inherited, **sub} if isinstance(sub, dict) else sub)
        else:
            entries.append(item)
    return entries


class ClaudeAnalyzer:
    def __init__(
        self,
        pr_number: int,
        agents_config: AgentsConfig | None = None,
        cwd: Path | None = None,
        stats_file: Path | None = None,
        run_id: str = "",
    ):
        self.pr_number = pr_number
        self.agents_config = agents_config or AgentsConfig()
        self.cwd = cwd
        self.stats_file = stats_file
        self.run_id = run_id

    def build_prompt(self, comments: list[ReviewComment], settings: AnalysisSettings) -> str:
        return render_prompt(
            "analyze",
            language=settings.user_language,
            pr_number=self.pr_number,
            comment_count=len(comments),
            nitpick_instruction=NITPICK_PROCESS if settings.process_nitpick_comments else NITPICK_SKIP,
            comments=format_comments(comments),
        )

    def analyze(self, comments: list[ReviewComment], settings: AnalysisSettings) -> list[dict]:
        """
        Run the analyze stage command on a batch.

        Raises:
            AnalysisError: timeout, missing binary, non-zero exit or output
                that cannot be turned into a list of entries
        """
        prompt = self.build_prompt(comments, settings)
        stage = get_stage_command(self.agents_config, "analyze", {"prompt": prompt})

        # Remove ANTHROPIC_API_KEY so Claude uses OAuth credentials instead
        env = {k: v for k, v in os.environ.items() if k != "ANTHROPIC_API_KEY"}

        start = time.monotonic()
        try:
            result = subprocess.run(
                stage.cmd,
                input=stage.get_stdin_input(prompt),
                capture_output=True,
                text=True,
                timeout=settings.analysis_timeout,
                env=env,
                cwd=str(self.cwd) if self.cwd else None,
            )
        except subprocess.TimeoutExpired:
            self._record(comments, start, False, error="timeout")
            raise AnalysisError(f"Analyzer timed out after {settings.analysis_timeout}s") from None
        except FileNotFoundError:
            self._record(comments, start, False, error="not found")
            raise AnalysisError(f"Analyzer command not found: {stage.cmd[0]}") from None

        if result.returncode != 0:
            error_msg = result.stderr.strip() or result.stdout.strip() or "(no output)"
            self._record(comments, start, False, error=f"exit {result.returncode}")
            raise AnalysisError(f"Analyzer failed (exit {result.returncode})", detail=error_msg)

        text = result.stdout
        usage = {}
        if stage.output_format == "json":
            # Claude CLI wraps the answer: {"type": "result", "result": "...", "usage": {...}}
            try:
                wrapper = json.loads(result.stdout.strip())
            except json.JSONDecodeError:
                wrapper = None
            if isinstance(wrapper, dict) and "result" in wrapper:
                if wrapper.get("is_error"):
                    self._record(comments, start, False, error="is_error")
                    raise AnalysisError("Analyzer reported an error", detail=str(wrapper.get("result")))
                text = wrapper.get("result") or ""
                usage = wrapper.get("usage") or {}

        try:
            data = parse_json_response(text)
            entries = extract_task_entries(data)
        except (JSONRepairError, AnalysisError) as e:
            self._record(comments, start, False, error="unparseable output")
            raise AnalysisError(f"Unusable analyzer output: {e}", detail=text[:500]) from None

        self._record(
            comments, start, True,
            input_tokens=usage.get("input_tokens"),
            output_tokens=usage.get("output_tokens"),
        )
        logger.debug(f"Analyzer returned {len(entries)} entries for {len(comments)} comments")
        return entries

    def _record(self, comments, start, success, error=None, input_tokens=None, output_tokens=None):
        if self.stats_file is None:
            return
        stats = AnalysisStats(
            timestamp=now_iso(),
            run_id=self.run_id,
            comment_count=len(comments),
            elapsed_seconds=round(time.monotonic() - start, 3),
            success=success,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            error=error,
        )
        try:
            record_analysis_stats(self.stats_file, stats)
        except OSError as e:
            logger.warning(f"Could not record analyzer stats: {e}")
