"""Remote tabular backend: Google Sheets v4 REST API.

Two partitions (sheets), one for open and one for closed issues. Each holds a
header row followed by one row per issue. Every save clears the full column
range and rewrites it.
"""

import logging
from typing import Any, Dict, List
from urllib.parse import quote

import requests
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account

from issuerelay.models import Issue, Snapshot
from issuerelay.persistence.base import PersistenceAdapter, PersistenceError

LOG = logging.getLogger("issuerelay.persistence.sheets")

OPEN_HEADER = ["ID", "Title", "Assigned To", "Created At", "Creator"]
CLOSED_HEADER = OPEN_HEADER + ["Closed At", "Closed By"]
ASSIGNEE_SEPARATOR = ", "
SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
TOKEN_URI = "https://oauth2.googleapis.com/token"
UNTITLED = "(untitled)"


def _cell(row: List[Any], index: int) -> str | None:
    if index < len(row):
        value = str(row[index]).strip()
        return value or None
    return None


def _issue_from_row(row: List[Any]) -> Issue | None:
    issue_id = _cell(row, 0)
    if not issue_id:
        return None
    title = _cell(row, 1)
    if not title:
        LOG.warning("Row for issue %s has no title, using %r", issue_id, UNTITLED)
        title = UNTITLED
    assigned = _cell(row, 2) or ""
    data: Dict[str, Any] = {
        "id": issue_id,
        "title": title,
        "assignedIds": [a.strip() for a in assigned.split(ASSIGNEE_SEPARATOR.strip()) if a.strip()],
        "creator": _cell(row, 4),
        "closedAt": _cell(row, 5),
        "closedBy": _cell(row, 6),
    }
    created = _cell(row, 3)
    if created:
        data["createdAt"] = created
    return Issue.model_validate(data)


def _row_from_issue(issue: Issue, closed: bool) -> List[str]:
    row = [
        issue.id,
        issue.title,
        ASSIGNEE_SEPARATOR.join(issue.assigned_ids),
        issue.created_at,
        issue.creator or "",
    ]
    if closed:
        row += [issue.closed_at or "", issue.closed_by or ""]
    return row


def _column_letter(count: int) -> str:
    return chr(ord("A") + count - 1)


def service_account_session(
    credentials_file: str | None = None,
    client_email: str | None = None,
    private_key: str | None = None,
) -> requests.Session | None:
    """Authorized session for a Google service account, or None without credentials.

    Either a JSON key file or the client email plus private key. Escaped
    newlines in the key (as stored in env files) are restored. The session
    refreshes its access token on its own.
    """
    if credentials_file:
        creds = service_account.Credentials.from_service_account_file(credentials_file, scopes=SCOPES)
    elif client_email and private_key:
        info = {
            "type": "service_account",
            "client_email": client_email,
            "private_key": private_key.replace("\\n", "\n"),
            "token_uri": TOKEN_URI,
        }
        creds = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
    else:
        return None
    return AuthorizedSession(creds)


class SheetsAdapter(PersistenceAdapter):
    """Snapshot stored in two sheets of one spreadsheet."""

    name = "sheets"

    def __init__(
        self,
        spreadsheet_id: str,
        session: requests.Session | None = None,
        api_url: str = "https://sheets.googleapis.com/v4",
        open_sheet: str = "Open Issues",
        closed_sheet: str = "Closed Issues",
        timeout: int = 30,
    ) -> None:
        self._spreadsheet_id = spreadsheet_id
        self._api_url = api_url.rstrip("/")
        self._open_sheet = open_sheet
        self._closed_sheet = closed_sheet
        self._timeout = timeout
        self._schema_ready = False
        self._session = session if session is not None else requests.Session()
        self._session.headers["Accept"] = "application/json"

    def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
    ) -> requests.Response:
        url = f"{self._api_url}/spreadsheets/{self._spreadsheet_id}{path}"
        try:
            resp = self._session.request(method, url, params=params, json=json, timeout=self._timeout)
        except requests.RequestException as e:
            raise PersistenceError(f"Sheets request failed: {e}") from e
        if resp.status_code >= 400:
            msg = resp.text or resp.reason or str(resp.status_code)
            try:
                msg = resp.json().get("error", {}).get("message", msg)
            except Exception:
                pass
            raise PersistenceError(f"{resp.status_code}: {msg}")
        return resp

    def _values_path(self, range_: str) -> str:
        return f"/values/{quote(range_, safe='!:')}"

    def _range(self, sheet: str, cells: str) -> str:
        return f"'{sheet}'!{cells}"

    def _spreadsheet_exists(self) -> bool:
        url = f"{self._api_url}/spreadsheets/{self._spreadsheet_id}"
        try:
            resp = self._session.request(
                "GET",
                url,
                params={"fields": "spreadsheetId"},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise PersistenceError(f"Sheets request failed: {e}") from e
        if resp.status_code == 404:
            return False
        if resp.status_code >= 400:
            raise PersistenceError(f"{resp.status_code}: {resp.text or resp.reason}")
        return True

    def ensure_schema(self) -> None:
        """Create missing partitions and header rows. Runs once per process."""
        if self._schema_ready:
            return
        data = self._request("GET", "", params={"fields": "sheets.properties.title"}).json() or {}
        titles = {(s.get("properties") or {}).get("title") for s in data.get("sheets") or []}
        missing = [t for t in (self._open_sheet, self._closed_sheet) if t not in titles]
        if missing:
            requests_body = [{"addSheet": {"properties": {"title": t}}} for t in missing]
            self._request("POST", ":batchUpdate", json={"requests": requests_body})
            LOG.info("Created sheets: %s", ", ".join(missing))
        for sheet, header in ((self._open_sheet, OPEN_HEADER), (self._closed_sheet, CLOSED_HEADER)):
            current = self._get_rows(self._range(sheet, "1:1"))
            if not current or current[0] != header:
                self._put_rows(self._range(sheet, "A1"), [header])
                LOG.info("Wrote header row to sheet %s", sheet)
        self._schema_ready = True

    def _get_rows(self, range_: str) -> List[List[Any]]:
        data = self._request("GET", self._values_path(range_)).json() or {}
        return data.get("values") or []

    def _put_rows(self, range_: str, rows: List[List[Any]]) -> None:
        self._request(
            "PUT",
            self._values_path(range_),
            params={"valueInputOption": "RAW"},
            json={"values": rows},
        )

    def _clear(self, range_: str) -> None:
        self._request("POST", f"{self._values_path(range_)}:clear", json={})

    def load(self) -> Snapshot | None:
        """Read both partitions. None when the spreadsheet itself is missing."""
        if not self._spreadsheet_exists():
            LOG.warning("Spreadsheet %s not found", self._spreadsheet_id)
            return None
        self.ensure_schema()
        open_width = _column_letter(len(OPEN_HEADER))
        closed_width = _column_letter(len(CLOSED_HEADER))
        open_rows = self._get_rows(self._range(self._open_sheet, f"A2:{open_width}"))
        closed_rows = self._get_rows(self._range(self._closed_sheet, f"A2:{closed_width}"))
        open_issues = [i for i in map(_issue_from_row, open_rows) if i is not None]
        closed_issues = [i for i in map(_issue_from_row, closed_rows) if i is not None]
        LOG.info("Loaded %s open and %s closed issues from sheets", len(open_issues), len(closed_issues))
        return Snapshot(open=open_issues, closed=closed_issues)

    def save(self, snapshot: Snapshot) -> None:
        """Clear each partition and rewrite header plus all rows."""
        self.ensure_schema()
        for sheet, header, issues, closed in (
            (self._open_sheet, OPEN_HEADER, snapshot.open, False),
            (self._closed_sheet, CLOSED_HEADER, snapshot.closed, True),
        ):
            width = _column_letter(len(header))
            rows = [header] + [_row_from_issue(i, closed) for i in issues]
            self._clear(self._range(sheet, f"A:{width}"))
            self._put_rows(self._range(sheet, "A1"), rows)
        LOG.debug("Saved %s open and %s closed issues to sheets", len(snapshot.open), len(snapshot.closed))
