"""Translate GitHub webhook payloads into one-line chat notifications.

Supported events: push, issues, pull_request, issue_comment, release.
Anything else (or an uninteresting action) yields None and is not relayed.
"""

from typing import Any, Callable, Dict

ISSUE_ACTIONS = {"opened", "closed", "reopened", "assigned"}
PR_ACTIONS = {"opened", "closed", "reopened", "ready_for_review"}
MAX_COMMITS = 5


def _repo(payload: Dict[str, Any]) -> str:
    return (payload.get("repository") or {}).get("full_name") or "unknown repo"


def _actor(payload: Dict[str, Any]) -> str:
    return (payload.get("sender") or {}).get("login") or "someone"


def _first_line(text: str | None, limit: int = 80) -> str:
    line = (text or "").strip().splitlines()[0] if (text or "").strip() else ""
    return line if len(line) <= limit else line[: limit - 1] + "…"


def format_push(payload: Dict[str, Any]) -> str | None:
    commits = payload.get("commits") or []
    if not commits:
        return None
    branch = (payload.get("ref") or "").removeprefix("refs/heads/")
    lines = [f"[{_repo(payload)}] {_actor(payload)} pushed {len(commits)} commit(s) to {branch}"]
    for commit in commits[:MAX_COMMITS]:
        lines.append(f"- {(commit.get('id') or '')[:7]} {_first_line(commit.get('message'))}")
    if len(commits) > MAX_COMMITS:
        lines.append(f"... and {len(commits) - MAX_COMMITS} more")
    return "\n".join(lines)


def format_issues(payload: Dict[str, Any]) -> str | None:
    action = payload.get("action")
    if action not in ISSUE_ACTIONS:
        return None
    issue = payload.get("issue") or {}
    text = f"[{_repo(payload)}] {_actor(payload)} {action} issue #{issue.get('number')}: {issue.get('title', '')}"
    if action == "assigned":
        assignee = (payload.get("assignee") or {}).get("login")
        if assignee:
            text += f" -> {assignee}"
    if issue.get("html_url"):
        text += f"\n{issue['html_url']}"
    return text


def format_pull_request(payload: Dict[str, Any]) -> str | None:
    action = payload.get("action")
    if action not in PR_ACTIONS:
        return None
    pull = payload.get("pull_request") or {}
    if action == "closed" and pull.get("merged"):
        action = "merged"
    text = f"[{_repo(payload)}] {_actor(payload)} {action} PR #{pull.get('number')}: {pull.get('title', '')}"
    if pull.get("html_url"):
        text += f"\n{pull['html_url']}"
    return text


def format_issue_comment(payload: Dict[str, Any]) -> str | None:
    if payload.get("action") != "created":
        return None
    issue = payload.get("issue") or {}
    comment = payload.get("comment") or {}
    kind = "PR" if issue.get("pull_request") else "issue"
    return (
        f"[{_repo(payload)}] {_actor(payload)} commented on {kind} #{issue.get('number')}: "
        f"{_first_line(comment.get('body'))}"
    )


def format_release(payload: Dict[str, Any]) -> str | None:
    if payload.get("action") != "published":
        return None
    release = payload.get("release") or {}
    name = release.get("name") or release.get("tag_name") or ""
    return f"[{_repo(payload)}] {_actor(payload)} published release {name}"


FORMATTERS: Dict[str, Callable[[Dict[str, Any]], str | None]] = {
    "push": format_push,
    "issues": format_issues,
    "pull_request": format_pull_request,
    "issue_comment": format_issue_comment,
    "release": format_release,
}


def format_github_event(event: str, payload: Dict[str, Any]) -> str | None:
    """Return the notification text for a GitHub event, or None to skip it."""
    formatter = FORMATTERS.get(event)
    if formatter is None:
        return None
    return formatter(payload)
