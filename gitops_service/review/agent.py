"""
Code review agent.

Committed onto every ``{project}-master`` branch as
``.github/scripts/review.py`` (next to ``prompt.md``) and run by the
code-review workflow on each pull request. It fetches the PR diff, asks an
OpenAI-compatible chat-completions API for a structured review, posts the
review as a PR comment and writes ``review_outcome`` to ``$GITHUB_OUTPUT``.

This file is standalone: it only needs httpx, structlog and
pydantic-settings, never the gitops_service package.

Environment:
    GH_TOKEN            GitHub token (read PR, write comments)
    OPENROUTER_API_KEY  LLM API key
    GH_REPO_FULL        "owner/repo"
    PR_NUMBER           pull request number
    REVIEW_MODEL        model id (default: anthropic/claude-3.5-haiku)
    GITHUB_OUTPUT       output file (set by the Actions runner)
    GH_API_TIMEOUT      seconds, default 30
    LLM_TIMEOUT         seconds, default 120
"""

import asyncio
import json
import os
import re
import sys
from pathlib import Path
from typing import Any

import httpx
import structlog
from pydantic import Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

log = structlog.get_logger("code_review_agent")

MAX_DIFF_CHARS = 24000
FALLBACK_OUTCOME = "COMMENT"
OUTCOME_MARKERS = {"APPROVE": "✅", "REQUEST_CHANGES": "❌", "COMMENT": "💬"}
SEVERITY_MARKERS = {"critical": "🔴", "major": "🟠", "minor": "🟡", "info": "ℹ️"}


class ReviewError(Exception):
    """Review could not be produced or posted."""


class ReviewSettings(BaseSettings):
    """Agent settings read from the workflow environment."""

    model_config = SettingsConfigDict(case_sensitive=False, env_ignore_empty=True)

    gh_token: SecretStr
    openrouter_api_key: SecretStr
    gh_repo_full: str
    pr_number: int
    review_model: str = "anthropic/claude-3.5-haiku"
    github_output: Path | None = None
    gh_api_url: str = "https://api.github.com"
    llm_url: str = "https://openrouter.ai/api/v1/chat/completions"
    gh_api_timeout: float = Field(default=30.0, gt=0)
    llm_timeout: float = Field(default=120.0, gt=0)
    max_tokens: int = Field(default=2048, ge=1)


def write_output(path: str | Path | None, key: str, value: str) -> None:
    """Append ``key=value`` to the Actions output file, if there is one."""
    if path:
        with open(path, "a") as f:
            f.write(f"{key}={value}\n")


def build_user_message(diff: str) -> str:
    """Wrap the diff for the LLM, truncating it at MAX_DIFF_CHARS."""
    if not diff.strip():
        return "The diff is empty - no code changes detected."

    note = ""
    if len(diff) > MAX_DIFF_CHARS:
        note = f"\n\n[Diff truncated at {MAX_DIFF_CHARS} chars - {len(diff) - MAX_DIFF_CHARS} chars omitted]"
        diff = diff[:MAX_DIFF_CHARS]
    return f"Please review the following pull request diff:\n\n```diff\n{diff}{note}\n```"


def parse_review(raw: str) -> dict[str, Any]:
    """Parse the model's JSON review, tolerating code fences and chatter.

    Raises:
        ReviewError: No JSON object could be extracted
    """
    cleaned = re.sub(r"^```(?:json)?\s*", "", raw.strip(), flags=re.IGNORECASE)
    cleaned = re.sub(r"\s*```$", "", cleaned).strip()
    try:
        review = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", cleaned, flags=re.DOTALL)
        if not match:
            raise ReviewError(f"Could not parse LLM response as JSON: {raw[:200]}") from None
        try:
            review = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ReviewError(f"Could not parse LLM response as JSON: {raw[:200]}") from e
    if not isinstance(review, dict):
        raise ReviewError(f"LLM response is not a JSON object: {raw[:200]}")
    return review


def format_comment(review: dict[str, Any], repo_full: str, model: str) -> str:
    """Render a review as the Markdown PR comment."""
    outcome = review.get("outcome", FALLBACK_OUTCOME)
    lines = []
    for issue in review.get("issues") or []:
        severity = issue.get("severity", "info")
        location = ""
        if issue.get("file"):
            location = f" `{issue['file']}:{issue['line']}`" if issue.get("line") else f" `{issue['file']}`"
        marker = SEVERITY_MARKERS.get(severity, "•")
        lines.append(f"- {marker} **{severity}**{location}: {issue.get('message', '')}")

    return "\n".join(
        [
            f"## {OUTCOME_MARKERS.get(outcome, '💬')} Code Review: {outcome}",
            "",
            review.get("summary", ""),
            "",
            "### Issues\n" + "\n".join(lines) if lines else "_No issues found._",
            "",
            "---",
            f"_Reviewed by [gitops code-review agent](https://github.com/{repo_full}) · model: `{model}`_",
        ]
    )


class ReviewAgent:
    """Fetches a PR diff, reviews it with an LLM and posts the result."""

    def __init__(self, settings: ReviewSettings, prompt: str, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self.prompt = prompt
        self._transport = transport
        self.pr_path = f"/repos/{settings.gh_repo_full}/pulls/{settings.pr_number}"

    def _github(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.gh_api_url,
            timeout=self.settings.gh_api_timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.settings.gh_token.get_secret_value()}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )

    async def fetch_diff(self, gh: httpx.AsyncClient) -> str:
        response = await gh.get(self.pr_path, headers={"Accept": "application/vnd.github.v3.diff"})
        if not response.is_success:
            raise ReviewError(f"Failed to fetch PR diff: {response.status_code} {response.text}")
        return response.text

    async def call_llm(self, diff: str) -> str:
        async with httpx.AsyncClient(timeout=self.settings.llm_timeout, transport=self._transport) as llm:
            response = await llm.post(
                self.settings.llm_url,
                headers={
                    "Authorization": f"Bearer {self.settings.openrouter_api_key.get_secret_value()}",
                    "HTTP-Referer": f"https://github.com/{self.settings.gh_repo_full}",
                    "X-Title": "gitops-service code-review-agent",
                },
                json={
                    "model": self.settings.review_model,
                    "max_tokens": self.settings.max_tokens,
                    "messages": [
                        {"role": "system", "content": self.prompt},
                        {"role": "user", "content": build_user_message(diff)},
                    ],
                },
            )
        if not response.is_success:
            raise ReviewError(f"LLM API error: {response.status_code} {response.text}")
        choices = response.json().get("choices") or [{}]
        return (choices[0].get("message", {}).get("content") or "").strip()

    async def post_comment(self, gh: httpx.AsyncClient, body: str) -> None:
        response = await gh.post(
            f"/repos/{self.settings.gh_repo_full}/issues/{self.settings.pr_number}/comments",
            json={"body": body},
        )
        if not response.is_success:
            raise ReviewError(f"Failed to post comment: {response.status_code} {response.text}")

    def set_output(self, key: str, value: str) -> None:
        write_output(self.settings.github_output, key, value)

    async def run(self) -> str:
        """Review the pull request and return the outcome."""
        log.info("review_started", repo=self.settings.gh_repo_full, pr=self.settings.pr_number)
        async with self._github() as gh:
            diff = await self.fetch_diff(gh)
            log.info("diff_fetched", chars=len(diff))

            raw = await self.call_llm(diff)
            review = parse_review(raw)
            outcome = review.get("outcome", FALLBACK_OUTCOME)
            log.info("review_parsed", outcome=outcome, issues=len(review.get("issues") or []))

            await self.post_comment(gh, format_comment(review, self.settings.gh_repo_full, self.settings.review_model))

        self.set_output("review_outcome", outcome)
        log.info("review_posted", outcome=outcome)
        return outcome


def main() -> int:
    try:
        settings = ReviewSettings()
    except ValidationError as e:
        log.error("review_misconfigured", error=str(e))
        write_output(os.environ.get("GITHUB_OUTPUT"), "review_outcome", FALLBACK_OUTCOME)
        return 1

    prompt = (Path(__file__).parent / "prompt.md").read_text(encoding="utf-8")
    agent = ReviewAgent(settings, prompt)
    try:
        asyncio.run(agent.run())
    except (ReviewError, httpx.HTTPError) as e:
        log.error("review_failed", error=str(e))
        agent.set_output("review_outcome", FALLBACK_OUTCOME)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
