"""
Chat command parsing and execution against an IssueStore.

Commands look like "$issue assign 3 self" or "$everyone jc". The handler returns the reply text
(or None when the message is not a command); delivery is up to the caller.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from issuerelay.issue_store import IssueStore
from issuerelay.models import Issue, IssueValidationError

LOG = logging.getLogger("issuerelay.commands")

HELP_TEXT = """*Issue Tracker Commands*

*Creating Issues:*
{p}issue add title here - Create a new issue

*Viewing Issues:*
{p}issue list - List all open issues
{p}issue closed - List all closed issues
{p}issue my - List your assigned issues

*Managing Issues:*
{p}issue assign <id> self - Assign issue to yourself
{p}issue assign <id> @mention1 @mention2 - Assign to multiple people
{p}issue unassign <id> - Remove all assignments from issue
{p}issue unassign <id> @mention - Remove specific person from issue
{p}issue rename <id> new title - Change the title
{p}issue deadline <id> YYYY-MM-DD|clear - Set or clear the deadline
{p}issue complete <id> - Mark issue as complete
{p}issue close <id> - Mark issue as complete (alias)
{p}issue reopen <id> - Reopen a completed issue
{p}issue delete <id> - Delete an issue

*Group:*
{p}everyone - Mention all group members
{p}everyone jc - Mention all non admin members
{p}everyone sc - Mention all admin members"""

EVERYONE_MODES = {"jc": False, "sc": True}


class Participant(BaseModel):
    """Group member as reported by the bridge."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = ""
    is_admin: bool = Field(default=False, alias="isAdmin")
    is_super_admin: bool = Field(default=False, alias="isSuperAdmin")

    @field_validator("id", mode="before")
    @classmethod
    def _flatten_id(cls, value: object) -> object:
        # Some bridges send {"_serialized": "123@c.us", ...}
        if isinstance(value, dict):
            return value.get("_serialized") or ""
        return value

    @property
    def admin(self) -> bool:
        return self.is_admin or self.is_super_admin


class ChatMessage(BaseModel):
    """Inbound chat message as posted by the bridge."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sender: str = Field(alias="from", description="Chat id of the author")
    body: str = ""
    chat_id: str | None = Field(default=None, alias="chatId", description="Chat the message came from")
    mentioned_ids: List[str] = Field(default_factory=list, alias="mentionedIds")
    is_group: bool = Field(default=False, alias="isGroup")
    from_me: bool = Field(default=False, alias="fromMe", description="Sent by the bot account itself")
    participants: List[Participant] = Field(default_factory=list)


class Command(BaseModel):
    """Parsed "$issue <name> ..." or "$everyone ..." command."""

    root: str = "issue"
    name: str
    args: List[str] = Field(default_factory=list)
    rest: str = Field(default="", description="Raw text after the subcommand")


def _command_re(prefix: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(prefix)}(?P<root>issue|help|everyone)\b(?P<tail>.*)$", re.IGNORECASE | re.DOTALL)


def parse_command(text: str | None, prefix: str = "$") -> Command | None:
    if not text:
        return None
    m = _command_re(prefix).match(text.strip())
    if not m:
        return None
    root = m.group("root").lower()
    if root == "help":
        return Command(name="help")
    tail = (m.group("tail") or "").strip()
    if root == "everyone":
        return Command(root=root, name=root, args=tail.split(), rest=tail)
    if not tail:
        return Command(name="")
    parts = re.split(r"\s+", tail, maxsplit=1)
    name, rest = parts[0], parts[1] if len(parts) > 1 else ""
    return Command(name=name.lower(), args=rest.split(), rest=rest.strip())


def _format_people(ids: List[str]) -> str:
    return ", ".join(f"@{i.split('@')[0]}" for i in ids)


def format_issue_line(issue: Issue) -> str:
    lines = [f"#{issue.id}: {issue.title}"]
    if issue.is_closed:
        if issue.closed_by:
            lines.append(f"Completed by: {_format_people([issue.closed_by])}")
        if issue.assigned_ids:
            lines.append(f"Was assigned to: {_format_people(issue.assigned_ids)}")
        return "\n".join(lines)
    lines.append(f"Assigned to: {_format_people(issue.assigned_ids)}" if issue.assigned_ids else "Unassigned")
    if issue.creator:
        lines.append(f"Created by: {_format_people([issue.creator])}")
    if issue.deadline:
        lines.append(f"Deadline: {issue.deadline}")
    return "\n".join(lines)


class CommandHandler:
    """Executes parsed commands for one store."""

    def __init__(self, store: IssueStore, prefix: str = "$", owner_id: str | None = None) -> None:
        self._store = store
        self._prefix = prefix
        self._owner_id = owner_id
        self._handlers: Dict[str, Callable[[Command, ChatMessage], str]] = {
            "add": self._add,
            "list": self._list_open,
            "closed": self._list_closed,
            "my": self._my,
            "assign": self._assign,
            "unassign": self._unassign,
            "complete": self._complete,
            "close": self._complete,
            "reopen": self._reopen,
            "delete": self._delete,
            "rename": self._rename,
            "deadline": self._deadline,
        }

    def handle(self, message: ChatMessage) -> str | None:
        """Return the reply for a chat message, or None if it is not a command."""
        command = parse_command(message.body, self._prefix)
        if command is None:
            return None
        if command.name == "help":
            return HELP_TEXT.format(p=self._prefix)
        if command.root == "everyone":
            return self._everyone(command, message)
        handler = self._handlers.get(command.name)
        if handler is None:
            return f"Unknown command. Use {self._prefix}help to see all commands."
        LOG.debug("Command %s from %s", command.name, message.sender)
        try:
            return handler(command, message)
        except IssueValidationError as e:
            return f"{e}. Use {self._prefix}help to see usage."

    def _usage(self, text: str) -> str:
        return f"Usage: {self._prefix}issue {text}"

    def _add(self, command: Command, message: ChatMessage) -> str:
        if not command.rest:
            return self._usage("add title here")
        issue = self._store.add(command.rest, creator=message.sender)
        return f"Created issue #{issue.id}: {issue.title}\nCreated by: {_format_people([message.sender])}"

    def _list_open(self, command: Command, message: ChatMessage) -> str:
        issues = self._store.list_open()
        if not issues:
            return "No open issues"
        return "*Open Issues:*\n\n" + "\n\n".join(format_issue_line(i) for i in issues)

    def _list_closed(self, command: Command, message: ChatMessage) -> str:
        issues = self._store.list_closed()
        if not issues:
            return "No closed issues"
        return "*Closed Issues:*\n\n" + "\n\n".join(format_issue_line(i) for i in issues)

    def _my(self, command: Command, message: ChatMessage) -> str:
        issues = self._store.list_assigned_to(message.sender)
        if not issues:
            return "You have no assigned issues"
        return "*Your Assigned Issues:*\n\n" + "\n".join(f"#{i.id}: {i.title}" for i in issues)

    def _assign(self, command: Command, message: ChatMessage) -> str:
        if not command.args:
            return self._usage("assign <id> self OR assign <id> @mention1 @mention2")
        issue_id = command.args[0]
        if len(command.args) > 1 and command.args[1].lower() == "self":
            targets = [message.sender]
        elif message.mentioned_ids:
            targets = message.mentioned_ids
        else:
            return self._usage("assign <id> self OR assign <id> @mention1 @mention2")
        if not self._store.assign(issue_id, targets):
            return f"Issue #{issue_id} not found"
        if targets == [message.sender]:
            return f"Assigned issue #{issue_id} to you"
        return f"Assigned issue #{issue_id} to {_format_people(targets)}"

    def _unassign(self, command: Command, message: ChatMessage) -> str:
        if not command.args:
            return self._usage("unassign <id> OR unassign <id> @mention")
        issue_id = command.args[0]
        if message.mentioned_ids:
            if self._store.unassign_some(issue_id, message.mentioned_ids):
                return f"Removed {_format_people(message.mentioned_ids)} from issue #{issue_id}"
            return f"Issue #{issue_id} not found or person(s) not assigned"
        if self._store.unassign_all(issue_id):
            return f"Unassigned all people from issue #{issue_id}"
        return f"Issue #{issue_id} not found"

    def _complete(self, command: Command, message: ChatMessage) -> str:
        if not command.args:
            return self._usage("complete <id> OR close <id>")
        issue_id = command.args[0]
        if self._store.close(issue_id, closed_by=message.sender):
            return f"Completed issue #{issue_id}"
        return f"Issue #{issue_id} not found"

    def _reopen(self, command: Command, message: ChatMessage) -> str:
        if not command.args:
            return self._usage("reopen <id>")
        issue_id = command.args[0]
        if self._store.reopen(issue_id):
            return f"Reopened issue #{issue_id}"
        return f"Closed issue #{issue_id} not found"

    def _delete(self, command: Command, message: ChatMessage) -> str:
        if not command.args:
            return self._usage("delete <id>")
        issue_id = command.args[0]
        if self._store.delete(issue_id):
            return f"Deleted issue #{issue_id}"
        return f"Issue #{issue_id} not found"

    def _rename(self, command: Command, message: ChatMessage) -> str:
        if len(command.args) < 2:
            return self._usage("rename <id> new title")
        issue_id = command.args[0]
        title = command.rest[len(issue_id) :].strip()
        if self._store.update(issue_id, title):
            return f"Renamed issue #{issue_id}: {title}"
        return f"Issue #{issue_id} not found"

    def _deadline(self, command: Command, message: ChatMessage) -> str:
        if len(command.args) < 2:
            return self._usage("deadline <id> YYYY-MM-DD|clear")
        issue_id, value = command.args[0], command.args[1]
        deadline = None if value.lower() == "clear" else value
        if not self._store.set_deadline(issue_id, deadline):
            return f"Issue #{issue_id} not found"
        if deadline is None:
            return f"Cleared deadline of issue #{issue_id}"
        return f"Deadline of issue #{issue_id} set to {deadline}"

    def _everyone(self, command: Command, message: ChatMessage) -> str:
        """Mention group members: all, non-admins (jc) or admins (sc). Owner only."""
        if not message.is_group:
            return "This command only works in groups."
        admins: bool | None = None
        if command.args:
            mode = command.args[0].lower()
            if mode not in EVERYONE_MODES:
                return f"Usage: {self._prefix}everyone [jc|sc] - jc = non-admins, sc = admins"
            admins = EVERYONE_MODES[mode]
        if not message.from_me and (not self._owner_id or message.sender != self._owner_id):
            LOG.info("Refused %severyone from %s", self._prefix, message.sender)
            return "Only the bot owner can use this command."
        ids = [p.id for p in message.participants if p.id and (admins is None or p.admin == admins)]
        if not ids:
            return "No members matched that filter."
        LOG.info("Mentioning %s group members in %s", len(ids), message.chat_id)
        return " ".join(f"@{i.split('@')[0]}" for i in ids)
