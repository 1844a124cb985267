#!/usr/bin/env python3
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "httpx>=0.27",
#     "pyyaml>=6.0",
#     "rich>=13.0",
# ]
# ///
"""
Fizzy Migrate: Copy Fizzy boards between accounts.

Usage:
    uv run fizzy_migrate.py migrate board BOARD_ID --from SRC --to DST
    uv run fizzy_migrate.py migrate board BOARD_ID --from SRC --to DST --dry-run
    uv run fizzy_migrate.py migrate board BOARD_ID --from SRC --to DST \\
        --include-comments --include-steps --include-images

Board inspection:
    uv run fizzy_migrate.py column list --board BOARD_ID
    uv run fizzy_migrate.py column show maybe
    uv run fizzy_migrate.py card list --board BOARD_ID --column done --all

Attachments:
    uv run fizzy_migrate.py card attachments show 42 --include-comments
    uv run fizzy_migrate.py card attachments download 42 1 -o screenshot.png
    uv run fizzy_migrate.py comment attachments show --card 42
    uv run fizzy_migrate.py comment attachments download --card 42 -o files
"""

from __future__ import annotations

import argparse
import base64
import hashlib
import json
import mimetypes
import os
import re
import sys
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

# Progress and warnings go to stderr; stdout carries only the JSON payload.
console = Console(stderr=True)

CONFIG_FILE = ".fizzy-migrate.yml"


# =============================================================================
# Errors
# =============================================================================


class CliError(Exception):
    """Exit code 1 - API, not-found and migration failures."""

    exit_code = 1
    code = "error"


class InvalidArgumentsError(CliError):
    """Exit code 2 - bad flags or arguments."""

    exit_code = 2
    code = "invalid_args"


class NotFoundError(CliError):
    """Requested item does not exist."""

    code = "not_found"


class MigrationError(CliError):
    """Fatal failure that aborts a whole migration run."""

    code = "migration_failed"


class AccountAccessError(MigrationError):
    """Caller cannot reach the source and/or target account."""

    code = "access_denied"

    def __init__(self, message: str, missing: list[str]):
        super().__init__(message)
        self.missing = missing


# Failures that a single migration sub-step turns into a warning.
RECOVERABLE_ERRORS = (httpx.HTTPError, OSError, ValueError)


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class ApiResponse:
    """Decoded API response."""

    data: Any = None
    location: str | None = None
    next_url: str | None = None


@dataclass
class UploadResult:
    """References to a blob freshly uploaded to an account."""

    signed_id: str
    attachable_sgid: str | None = None

    @property
    def inline_sgid(self) -> str:
        """Reference for embedding in rich text."""
        return self.attachable_sgid or self.signed_id


@dataclass
class StepResult:
    """Outcome of one per-card migration sub-step."""

    step: str
    count: int = 0
    warning: str | None = None

    @property
    def ok(self) -> bool:
        return self.warning is None


@dataclass
class CardMigrationResult:
    """Everything that happened while copying one card."""

    source_number: int
    target_number: int | None = None
    steps: list[StepResult] = field(default_factory=list)
    error: str | None = None

    @property
    def created(self) -> bool:
        return self.target_number is not None

    @property
    def warnings(self) -> list[StepResult]:
        return [s for s in self.steps if not s.ok]

    def step(self, name: str) -> StepResult | None:
        """Return the result of the named sub-step, if it ran."""
        for result in self.steps:
            if result.step == name:
                return result
        return None


@dataclass
class MigrationOptions:
    """What to migrate, and where from/to."""

    source_account: str
    target_account: str
    include_comments: bool = False
    include_steps: bool = False
    include_images: bool = False
    dry_run: bool = False

    def validate(self) -> None:
        """Reject missing or identical accounts."""
        if not self.source_account:
            raise InvalidArgumentsError("--from flag is required")
        if not self.target_account:
            raise InvalidArgumentsError("--to flag is required")
        if self.source_account.lstrip("/") == self.target_account.lstrip("/"):
            raise InvalidArgumentsError("--from and --to accounts must be different")


# Sub-step name -> statistics counter it feeds
STEP_COUNTERS = {
    "tags": "tags_applied",
    "comments": "comments_created",
    "steps": "steps_created",
    "inline_attachments": "images_migrated",
    "comment_attachments": "images_migrated",
    "image": "images_migrated",
}


@dataclass
class MigrationStats:
    """Accumulated statistics for a migration run. Only ever grows."""

    source_account: str = ""
    target_account: str = ""
    source_board_name: str = ""
    dry_run: bool = False
    columns_to_create: int = 0
    cards_to_migrate: int = 0
    board_created: bool = False
    target_board_id: str | None = None
    target_board_name: str | None = None
    columns_created: int = 0
    cards_created: int = 0
    tags_applied: int = 0
    comments_created: int = 0
    steps_created: int = 0
    images_migrated: int = 0
    card_mapping: dict[int, int] = field(default_factory=dict)
    column_warnings: list[str] = field(default_factory=list)
    card_results: list[CardMigrationResult] = field(default_factory=list)

    def record_card(self, result: CardMigrationResult) -> None:
        """Fold one card's outcome into the totals."""
        self.card_results.append(result)
        if not result.created:
            return
        self.card_mapping[result.source_number] = result.target_number
        self.cards_created += 1
        for step in result.steps:
            counter = STEP_COUNTERS.get(step.step)
            if counter:
                setattr(self, counter, getattr(self, counter) + step.count)

    @property
    def warning_count(self) -> int:
        count = len(self.column_warnings)
        for result in self.card_results:
            count += len(result.warnings) + (1 if result.error else 0)
        return count

    def to_dict(self) -> dict:
        """Payload printed on success, for both dry and real runs."""
        return {
            "dry_run": self.dry_run,
            "migrated": not self.dry_run and self.board_created,
            "from_account": self.source_account,
            "to_account": self.target_account,
            "source_board_name": self.source_board_name,
            "columns_to_create": self.columns_to_create,
            "cards_to_migrate": self.cards_to_migrate,
            "board_created": self.board_created,
            "board_id": self.target_board_id,
            "board_name": self.target_board_name,
            "columns_created": self.columns_created,
            "cards_created": self.cards_created,
            "tags_applied": self.tags_applied,
            "comments_created": self.comments_created,
            "steps_created": self.steps_created,
            "images_migrated": self.images_migrated,
            "card_mapping": {str(k): v for k, v in self.card_mapping.items()},
            "warnings": self.warning_count,
        }


# =============================================================================
# Config Class
# =============================================================================


@dataclass
class Config:
    """Configuration loaded from .fizzy-migrate.yml"""

    fizzy_base_url: str
    fizzy_api_token: str
    fizzy_account_slug: str = ""
    migrate_options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load config from .fizzy-migrate.yml, expanding ${ENV_VAR} references."""
        if config_path is None:
            config_path = cls.find_config_file()

        if config_path is None or not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found. Create {CONFIG_FILE} with your Fizzy "
                "base_url and api_token."
            )

        content = cls._expand_env_vars(config_path.read_text())
        data = yaml.safe_load(content) or {}

        fizzy = data.get("fizzy") or {}
        migrate = data.get("migrate") or {}

        return cls(
            fizzy_base_url=fizzy.get("base_url") or "https://app.fizzy.do",
            fizzy_api_token=fizzy.get("api_token") or "",
            fizzy_account_slug=str(fizzy.get("account_slug") or "").lstrip("/"),
            migrate_options=migrate,
        )

    @classmethod
    def find_config_file(cls) -> Path | None:
        """Search current dir, then parent dirs for .fizzy-migrate.yml."""
        current = Path.cwd()
        for directory in [current, *current.parents]:
            config_path = directory / CONFIG_FILE
            if config_path.exists():
                return config_path
        return None

    @staticmethod
    def _expand_env_vars(content: str) -> str:
        """Expand ${ENV_VAR} patterns in content."""

        def replacer(match: re.Match) -> str:
            return os.environ.get(match.group(1), "")

        return re.sub(r"\$\{(\w+)\}", replacer, content)

    def option(self, name: str) -> bool:
        """Boolean default from the migrate: section."""
        return bool(self.migrate_options.get(name, False))


# =============================================================================
# FizzyClient Class
# =============================================================================


class FizzyClient:
    """REST API client for Fizzy, scoped to one account.

    No request is retried: a failed call raises and the caller decides
    whether that is fatal or a warning.
    """

    def __init__(self, base_url: str, account_slug: str, api_token: str):
        self.base_url = base_url.rstrip("/")
        self.account_slug = account_slug.lstrip("/")
        self.headers = {
            "Authorization": f"Bearer {api_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        self._client = httpx.Client(timeout=30.0)

    def _url(self, path: str) -> str:
        """Absolute URL for a path or URL."""
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    def _account_path(self, path: str) -> str:
        """Build account-scoped path."""
        return f"/{self.account_slug}{path}"

    def _request(
        self,
        method: str,
        path: str,
        json_data: dict | None = None,
        params: dict | None = None,
        allow_404: bool = False,
    ) -> httpx.Response:
        """Make one HTTP request to the Fizzy API."""
        response = self._client.request(
            method=method,
            url=self._url(path),
            headers=self.headers,
            json=json_data,
            params=params,
        )
        if allow_404 and response.status_code == 404:
            return response
        response.raise_for_status()
        return response

    @staticmethod
    def _parse(response: httpx.Response) -> ApiResponse:
        """Decode body, Location header and next-page link."""
        data = None
        if response.content:
            try:
                data = response.json()
            except ValueError:
                data = None
        return ApiResponse(
            data=data,
            location=response.headers.get("Location") or None,
            next_url=response.links.get("next", {}).get("url"),
        )

    # Generic access
    def get(self, path: str, params: dict | None = None) -> ApiResponse:
        """GET an account-scoped resource."""
        return self._parse(
            self._request("GET", self._account_path(path), params=params)
        )

    def get_page(self, path: str, params: dict | None = None) -> ApiResponse:
        """GET one page of an account-scoped collection."""
        return self.get(path, params=params)

    def get_all(self, path: str, params: dict | None = None) -> list:
        """GET a collection, following next-page links until exhausted."""
        page = self.get_page(path, params=params)
        items = list(page.data or [])
        seen = set()
        while page.next_url and page.next_url not in seen:
            seen.add(page.next_url)
            page = self._parse(self._request("GET", page.next_url))
            items.extend(page.data or [])
        return items

    def post(self, path: str, body: dict | None = None) -> ApiResponse:
        """POST to an account-scoped path."""
        return self._parse(
            self._request("POST", self._account_path(path), json_data=body)
        )

    def patch(self, path: str, body: dict | None = None) -> ApiResponse:
        """PATCH an account-scoped resource."""
        return self._parse(
            self._request("PATCH", self._account_path(path), json_data=body)
        )

    def delete(self, path: str) -> ApiResponse:
        """DELETE an account-scoped resource."""
        return self._parse(self._request("DELETE", self._account_path(path)))

    def follow_location(self, location: str) -> ApiResponse:
        """GET the resource a creation response points at."""
        return self._parse(self._request("GET", location))

    def _created(self, response: ApiResponse) -> dict:
        """Full representation of a resource that was just created.

        The creation body is not guaranteed to be complete, so the Location
        header wins when it can be fetched.
        """
        if response.location:
            try:
                followed = self.follow_location(response.location)
            except httpx.HTTPError:
                followed = None
            if followed is not None and isinstance(followed.data, dict):
                return followed.data
        if isinstance(response.data, dict):
            return response.data
        return {}

    # Files
    def download_file(self, url: str, destination: Path) -> None:
        """Stream a file (usually a blob redirect) to a local path."""
        headers = {"Authorization": self.headers["Authorization"]}
        with self._client.stream(
            "GET", self._url(url), headers=headers, follow_redirects=True
        ) as response:
            response.raise_for_status()
            with open(destination, "wb") as fh:
                for chunk in response.iter_bytes():
                    fh.write(chunk)

    def upload_file(self, path: Path) -> UploadResult:
        """Upload a local file with an Active Storage direct upload."""
        path = Path(path)
        content = path.read_bytes()
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        checksum = base64.b64encode(hashlib.md5(content).digest()).decode()
        payload = {
            "blob": {
                "filename": path.name,
                "byte_size": len(content),
                "checksum": checksum,
                "content_type": content_type,
            }
        }
        response = self._request(
            "POST",
            self._account_path("/rails/active_storage/direct_uploads"),
            json_data=payload,
        )
        blob = response.json()

        direct_upload = blob.get("direct_upload") or {}
        if direct_upload.get("url"):
            upload = self._client.put(
                self._url(direct_upload["url"]),
                content=content,
                headers=direct_upload.get("headers") or {},
            )
            upload.raise_for_status()

        signed_id = blob.get("signed_id")
        if not signed_id:
            raise ValueError("no signed_id in upload response")
        return UploadResult(
            signed_id=signed_id, attachable_sgid=blob.get("attachable_sgid")
        )

    # Identity
    def get_identity(self) -> dict:
        """Get current user identity and accounts (not account-scoped)."""
        response = self._request("GET", "/my/identity")
        return response.json()

    # Boards
    def get_board(self, board_id: str) -> dict:
        """Get board details."""
        return self.get(f"/boards/{board_id}").data

    def create_board(self, name: str) -> dict:
        """Create a new board."""
        response = self.post("/boards", {"board": {"name": name}})
        board = self._created(response)
        if not board.get("id") and response.location:
            match = re.search(r"/boards/([^/\.]+)", response.location)
            if match:
                board = {**board, "id": match.group(1), "name": name}
        return board

    # Columns
    def list_columns(self, board_id: str) -> list[dict]:
        """List the real columns of a board."""
        return self.get(f"/boards/{board_id}/columns").data

    def get_column(self, board_id: str, column_id: str) -> dict:
        """Get one column."""
        return self.get(f"/boards/{board_id}/columns/{column_id}").data

    def create_column(
        self, board_id: str, name: str, color: str | None = None
    ) -> dict:
        """Create a new column."""
        payload: dict[str, Any] = {"column": {"name": name}}
        if color:
            payload["column"]["color"] = color
        response = self.post(f"/boards/{board_id}/columns", payload)
        column = self._created(response)
        if not column.get("id") and response.location:
            match = re.search(r"/columns/([^/\.]+)(?:\.json)?$", response.location)
            if match:
                column = {**column, "id": match.group(1), "name": name}
        return column

    # Cards
    def list_cards(self, board_id: str, indexed_by: str | None = None) -> list[dict]:
        """List every card on a board, across all pages."""
        params = {"board_ids[]": board_id}
        if indexed_by:
            params["indexed_by"] = indexed_by
        return self.get_all("/cards", params=params)

    def get_card(self, number: int) -> dict:
        """Get card by number."""
        return self.get(f"/cards/{number}").data

    def create_card(
        self,
        board_id: str,
        title: str,
        description: str | None = None,
        created_at: str | None = None,
    ) -> dict:
        """Create a new card."""
        card: dict[str, Any] = {"title": title}
        if description:
            card["description"] = description
        if created_at:
            card["created_at"] = created_at
        response = self.post(f"/boards/{board_id}/cards", {"card": card})
        created = self._created(response)
        if "number" not in created and response.location:
            match = re.search(r"/cards/(\d+)(?:\.json)?$", response.location)
            if match:
                created = {**created, "number": int(match.group(1)), "title": title}
        return created

    def set_card_image(self, number: int, signed_id: str) -> None:
        """Set a card's header image from an uploaded blob."""
        self.patch(f"/cards/{number}", {"card": {"image": signed_id}})

    def toggle_tag(self, card_number: int, tag_title: str) -> None:
        """Toggle a tag on a card (add if not present, remove if present)."""
        self.post(f"/cards/{card_number}/taggings", {"tag_title": tag_title})

    def triage_card(self, number: int, column_id: str) -> None:
        """Move card to a column."""
        self.post(f"/cards/{number}/triage", {"column_id": column_id})

    def close_card(self, number: int) -> None:
        """Close a card."""
        self.post(f"/cards/{number}/closure")

    def gild_card(self, number: int) -> None:
        """Mark a card as golden."""
        self.post(f"/cards/{number}/goldness")

    def postpone_card(self, number: int) -> None:
        """Move a card to the not-now lane (Maybe?)."""
        self.post(f"/cards/{number}/not_now")

    # Comments and steps
    def list_comments(self, card_number: int) -> list[dict]:
        """List every comment on a card."""
        return self.get_all(f"/cards/{card_number}/comments")

    def create_comment(
        self, card_number: int, body: str, created_at: str | None = None
    ) -> None:
        """Add a comment to a card."""
        comment: dict[str, Any] = {"body": body}
        if created_at:
            comment["created_at"] = created_at
        self.post(f"/cards/{card_number}/comments", {"comment": comment})

    def create_step(
        self, card_number: int, content: str, completed: bool = False
    ) -> None:
        """Add a step (to-do item) to a card."""
        step: dict[str, Any] = {"content": content}
        if completed:
            step["completed"] = True
        self.post(f"/cards/{card_number}/steps", {"step": step})

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()


# =============================================================================
# Pseudo Columns
# =============================================================================


@dataclass(frozen=True)
class PseudoColumn:
    """A UI-only lane with no column resource behind it."""

    id: str
    name: str
    kind: str

    def as_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "kind": self.kind, "pseudo": True}


PSEUDO_TRIAGE = PseudoColumn(id="not-yet", name="Not Yet", kind="triage")
PSEUDO_NOT_NOW = PseudoColumn(id="maybe", name="Maybe?", kind="not_now")
PSEUDO_CLOSED = PseudoColumn(id="done", name="Done", kind="closed")

PSEUDO_COLUMN_ALIASES = {
    "not-yet": PSEUDO_TRIAGE,
    "not_yet": PSEUDO_TRIAGE,
    "notyet": PSEUDO_TRIAGE,
    "triage": PSEUDO_TRIAGE,
    "maybe": PSEUDO_NOT_NOW,
    "maybe?": PSEUDO_NOT_NOW,
    "not-now": PSEUDO_NOT_NOW,
    "not_now": PSEUDO_NOT_NOW,
    "notnow": PSEUDO_NOT_NOW,
    "done": PSEUDO_CLOSED,
    "closed": PSEUDO_CLOSED,
    "close": PSEUDO_CLOSED,
}


def parse_pseudo_column(identifier: str | None) -> PseudoColumn | None:
    """Resolve a pseudo column alias. Returns None for anything else."""
    if not identifier:
        return None
    return PSEUDO_COLUMN_ALIASES.get(identifier.strip().lower())


def pseudo_columns_in_board_order() -> list[PseudoColumn]:
    return [PSEUDO_TRIAGE, PSEUDO_NOT_NOW, PSEUDO_CLOSED]


def board_columns(columns: list[dict]) -> list[dict]:
    """Real columns bookended by the pseudo lanes, as a board shows them."""
    *leading, closed = pseudo_columns_in_board_order()
    return [*(p.as_dict() for p in leading), *columns, closed.as_dict()]


def is_real_column(column: Any) -> bool:
    """True for columns backed by a server resource."""
    if not isinstance(column, dict):
        return False
    kind = column.get("kind")
    if isinstance(kind, str) and kind != "real":
        return False
    return column.get("pseudo") is not True


def real_columns(columns: list) -> list[dict]:
    """Columns that can be cloned, in their original order."""
    return [c for c in columns if is_real_column(c)]


def card_column_id(card: dict) -> str:
    """Column a card sits in, or "" when it is in a pseudo lane."""
    column_id = card.get("column_id")
    if isinstance(column_id, str) and column_id:
        return column_id
    column = card.get("column")
    if isinstance(column, dict) and isinstance(column.get("id"), str):
        return column["id"]
    return ""


# =============================================================================
# Attachment Parsing
# =============================================================================

ATTACHMENT_PATTERN = re.compile(
    r"<action-text-attachment\s+([^>]+)>(.*?)</action-text-attachment>", re.DOTALL
)
DOWNLOAD_LINK_PATTERN = re.compile(r'href="([^"?]+\?[^"]*disposition=attachment[^"]*)"')
BLOB_LINK_PATTERN = re.compile(
    r'href="(/[^"]+/rails/active_storage/blobs/redirect/[^"]+)"'
)


@dataclass
class Attachment:
    """A file embedded in rich text."""

    index: int = 0
    filename: str = ""
    content_type: str = ""
    filesize: int = 0
    width: int = 0
    height: int = 0
    download_url: str = ""
    sgid: str = ""

    def as_dict(self) -> dict:
        data = {
            "index": self.index,
            "filename": self.filename,
            "content_type": self.content_type,
            "filesize": self.filesize,
            "download_url": self.download_url,
            "sgid": self.sgid,
        }
        if self.width:
            data["width"] = self.width
        if self.height:
            data["height"] = self.height
        return data


@dataclass
class CommentAttachment(Attachment):
    """An attachment found in a comment body."""

    comment_id: str = ""

    def as_dict(self) -> dict:
        return {**super().as_dict(), "comment_id": self.comment_id}


def _extract_attr(attrs: str, name: str) -> str:
    """Value of a double-quoted attribute, or ""."""
    match = re.search(rf'(?:^|\s){re.escape(name)}="([^"]*)"', attrs)
    return match.group(1) if match else ""


def _int_attr(attrs: str, name: str) -> int:
    value = _extract_attr(attrs, name)
    try:
        return int(value)
    except ValueError:
        return 0


def _download_url(content: str) -> str:
    """Download link inside an attachment element's content."""
    if match := DOWNLOAD_LINK_PATTERN.search(content):
        return match.group(1)
    if match := BLOB_LINK_PATTERN.search(content):
        url = match.group(1)
        if "?" not in url:
            return f"{url}?disposition=attachment"
        return url
    return ""


def parse_attachments(html: str | None) -> list[Attachment]:
    """Extract file attachments from a rich-text HTML fragment.

    Elements that carry neither a filename nor a download link (mentions use
    the same element) are dropped. Survivors are numbered 1..N in document
    order; callers select attachments by that index.
    """
    if not html:
        return []

    attachments = []
    for match in ATTACHMENT_PATTERN.finditer(html):
        attrs, content = match.group(1), match.group(2)
        attachment = Attachment(
            filename=_extract_attr(attrs, "filename"),
            content_type=_extract_attr(attrs, "content-type"),
            filesize=_int_attr(attrs, "filesize"),
            width=_int_attr(attrs, "width"),
            height=_int_attr(attrs, "height"),
            download_url=_download_url(content),
            sgid=_extract_attr(attrs, "sgid"),
        )
        if not attachment.filename and not attachment.download_url:
            continue
        attachments.append(attachment)

    for index, attachment in enumerate(attachments, 1):
        attachment.index = index
    return attachments


def _comment_html(comment: dict) -> str:
    body = comment.get("body")
    if isinstance(body, dict) and isinstance(body.get("html"), str):
        return body["html"]
    return ""


def extract_comment_attachments(comments: list) -> list[CommentAttachment]:
    """Attachments across a card's comments, numbered globally from 1."""
    found = []
    for comment in comments:
        if not isinstance(comment, dict):
            continue
        html = _comment_html(comment)
        if not html:
            continue
        comment_id = str(comment.get("id") or "")
        for attachment in parse_attachments(html):
            found.append(
                CommentAttachment(
                    **{**attachment.__dict__, "index": len(found) + 1},
                    comment_id=comment_id,
                )
            )
    return found


def build_output_path(
    output: str | None, filename: str, index: int, total: int
) -> str:
    """Local filename for a downloaded attachment.

    A single download uses `output` verbatim; several downloads use it as a
    prefix (`shot` -> `shot_1.png`, `shot_2.png`).
    """
    safe_name = Path(filename).name or f"attachment_{index}"
    if not output:
        return safe_name
    if total == 1:
        return output
    ext = Path(safe_name).suffix
    prefix = str(Path(output).with_suffix("")) if Path(output).suffix else output
    return f"{prefix}_{index}{ext}"


# =============================================================================
# Account Access
# =============================================================================


def _slug_matches(slug: str, wanted: str) -> bool:
    """API slugs carry a leading slash ("/6086023")."""
    return slug == wanted or slug.removeprefix("/") == wanted.removeprefix("/")


def verify_account_access(
    client: FizzyClient, source_account: str, target_account: str
) -> None:
    """Raise AccountAccessError unless both accounts are reachable."""
    try:
        identity = client.get_identity()
    except httpx.HTTPError as e:
        raise MigrationError(f"Failed to fetch identity: {e}") from e

    accounts = identity.get("accounts") if isinstance(identity, dict) else None
    if not isinstance(accounts, list):
        raise MigrationError("No accounts found in identity response")

    found_source = found_target = False
    for account in accounts:
        if not isinstance(account, dict):
            continue
        slug = str(account.get("slug") or "")
        if _slug_matches(slug, source_account):
            found_source = True
        if _slug_matches(slug, target_account):
            found_target = True

    missing = []
    if not found_source:
        missing.append("source")
    if not found_target:
        missing.append("target")
    if missing:
        names = {"source": source_account, "target": target_account}
        described = " or ".join(f"{role} account '{names[role]}'" for role in missing)
        raise AccountAccessError(f"You don't have access to {described}", missing)


# =============================================================================
# Attachment Migration
# =============================================================================


@dataclass
class InlineMigration:
    """Rich text after its inline attachments were moved."""

    html: str
    found: int = 0
    migrated: int = 0
    warnings: list[str] = field(default_factory=list)

    def step_result(self, step: str) -> StepResult:
        return StepResult(
            step, count=self.migrated, warning="; ".join(self.warnings) or None
        )


def _filename_from_url(url: str) -> str:
    return Path(urlparse(url).path).name or "attachment"


class AttachmentMigrator:
    """Copy blobs from the source account's storage into the target's."""

    def __init__(self, source: FizzyClient, target: FizzyClient):
        self.source = source
        self.target = target

    def transfer(self, download_url: str, filename: str | None = None) -> UploadResult:
        """Download a blob from the source account and upload it to the target."""
        name = Path(filename).name if filename else _filename_from_url(download_url)
        with tempfile.TemporaryDirectory(prefix="fizzy-migrate-") as tmp:
            local_path = Path(tmp) / (name or "attachment")
            self.source.download_file(download_url, local_path)
            return self.target.upload_file(local_path)

    def migrate_header_image(self, image_url: str, target_card_number: int) -> StepResult:
        """Copy a card's header image onto the target card."""
        try:
            upload = self.transfer(image_url)
            self.target.set_card_image(target_card_number, upload.signed_id)
        except RECOVERABLE_ERRORS as e:
            return StepResult("image", warning=f"Failed to migrate image: {e}")
        return StepResult("image", count=1)

    def migrate_inline(self, html: str) -> InlineMigration:
        """Re-home every inline attachment in `html`.

        Each migrated reference swaps its old sgid for the new one exactly
        once. A failed transfer leaves the old (foreign) sgid in place.
        """
        attachments = parse_attachments(html)
        result = InlineMigration(html=html, found=len(attachments))

        for attachment in attachments:
            label = attachment.filename or f"attachment {attachment.index}"
            if not attachment.download_url:
                result.warnings.append(f"No download link for '{label}'")
                continue
            if not attachment.sgid:
                result.warnings.append(f"No sgid for '{label}'")
                continue
            try:
                upload = self.transfer(attachment.download_url, attachment.filename)
            except RECOVERABLE_ERRORS as e:
                result.warnings.append(f"Failed to migrate attachment '{label}': {e}")
                continue
            result.html = result.html.replace(attachment.sgid, upload.inline_sgid, 1)
            result.migrated += 1

        return result


# =============================================================================
# BoardMigrator Class
# =============================================================================


def _int_field(data: Any, key: str) -> int:
    if not isinstance(data, dict):
        return 0
    value = data.get(key)
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return 0


def _column_color(column: dict) -> str | None:
    color = column.get("color")
    if isinstance(color, dict):
        color = color.get("value")
    return color if isinstance(color, str) and color else None


def _is_closed(card: dict) -> bool:
    return card.get("status") == "closed" or card.get("closed") is True


def _comment_body(comment: dict) -> tuple[str, str]:
    """(body to post, html to scan for attachments)."""
    body = comment.get("body")
    if isinstance(body, dict):
        if isinstance(body.get("html"), str) and body["html"]:
            return body["html"], body["html"]
        if isinstance(body.get("plain_text"), str):
            return body["plain_text"], ""
        return "", ""
    if isinstance(body, str):
        return body, ""
    return "", ""


class BoardMigrator:
    """Clone a board from one account into another.

    Runs strictly in order: verify access, read the source board, columns and
    cards, then create the target board, all target columns, and finally each
    card with its dependents. Only the reads and the board creation are
    fatal; everything after that degrades to per-card warnings.
    """

    def __init__(
        self,
        options: MigrationOptions,
        source: FizzyClient,
        target: FizzyClient,
        identity_client: FizzyClient | None = None,
    ):
        self.options = options
        self.source = source
        self.target = target
        self.identity_client = identity_client or source
        self.attachments = AttachmentMigrator(source, target)
        self.column_mapping: dict[str, str] = {}
        self.postponed: set[int] = set()

    def run(self, source_board_id: str) -> MigrationStats:
        """Migrate the board (or just count, in dry-run mode)."""
        options = self.options
        stats = MigrationStats(
            source_account=options.source_account,
            target_account=options.target_account,
            dry_run=options.dry_run,
        )

        console.print("Verifying access to accounts...")
        verify_account_access(
            self.identity_client, options.source_account, options.target_account
        )

        console.print("Fetching source board...")
        board = self._fetch("source board", dict, self.source.get_board, source_board_id)
        board_name = board.get("name") or ""
        stats.source_board_name = board_name
        console.print(f"Source board: [cyan]{escape(board_name)}[/cyan]")

        console.print("Fetching source columns...")
        columns = self._fetch(
            "source columns", list, self.source.list_columns, source_board_id
        )

        console.print("Fetching source cards...")
        cards = self._fetch("source cards", list, self.source.list_cards, source_board_id)
        cards = self._with_postponed_cards(source_board_id, cards)
        console.print(f"Found {len(cards)} cards to migrate")

        to_clone = real_columns(columns)
        stats.columns_to_create = len(to_clone)
        stats.cards_to_migrate = len(cards)

        if options.dry_run:
            self._print_dry_run_summary(stats)
            return stats

        console.print("Creating target board...")
        try:
            target_board = self.target.create_board(board_name)
        except RECOVERABLE_ERRORS as e:
            raise MigrationError(f"Failed to create target board: {e}") from e
        target_board_id = target_board.get("id")
        if not target_board_id:
            raise MigrationError("Failed to get board ID from response")
        stats.board_created = True
        stats.target_board_id = str(target_board_id)
        stats.target_board_name = board_name

        # The mapping must be complete before any card is placed.
        self.column_mapping = self._create_columns(stats.target_board_id, to_clone, stats)

        console.print("Migrating cards...")
        for position, card in enumerate(cards, 1):
            if not isinstance(card, dict):
                continue
            console.print(
                f"  [{position}/{len(cards)}] Card #{_int_field(card, 'number')}: "
                f"{escape(str(card.get('title') or ''))}",
                highlight=False,
            )
            result = self.migrate_card(card, stats.target_board_id)
            stats.record_card(result)
            self._report(result)

        self._print_summary(stats)
        return stats

    def _fetch(self, what: str, expected: type, func, *args):
        """Read-only discovery call; any failure here is fatal."""
        try:
            data = func(*args)
        except RECOVERABLE_ERRORS as e:
            raise MigrationError(f"Failed to fetch {what}: {e}") from e
        if not isinstance(data, expected):
            raise MigrationError(f"Invalid {what} response")
        return data

    def _with_postponed_cards(self, board_id: str, cards: list) -> list:
        """Note which cards sit in the not-now lane, adding any not yet listed."""
        try:
            postponed = self.source.list_cards(board_id, indexed_by=PSEUDO_NOT_NOW.kind)
        except RECOVERABLE_ERRORS as e:
            console.print(
                f"[yellow]Warning:[/yellow] Could not list the {PSEUDO_NOT_NOW.name} "
                f"lane; its cards will not be postponed: {escape(str(e))}"
            )
            return cards
        if not isinstance(postponed, list):
            return cards

        known = {_int_field(c, "number") for c in cards}
        extra = []
        for card in postponed:
            number = _int_field(card, "number")
            if not number:
                continue
            self.postponed.add(number)
            if number not in known:
                known.add(number)
                extra.append(card)
        return cards + extra

    def _create_columns(
        self, board_id: str, columns: list[dict], stats: MigrationStats
    ) -> dict[str, str]:
        """Create target columns in source order; returns source id -> target id."""
        console.print("Creating columns...")
        mapping: dict[str, str] = {}
        for column in columns:
            name = str(column.get("name") or "")
            try:
                created = self.target.create_column(board_id, name, _column_color(column))
            except RECOVERABLE_ERRORS as e:
                warning = f"Failed to create column '{name}': {e}"
            else:
                if created.get("id"):
                    mapping[str(column.get("id"))] = str(created["id"])
                    stats.columns_created += 1
                    continue
                warning = f"Failed to get column ID for '{name}'"
            stats.column_warnings.append(warning)
            console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
        return mapping

    def migrate_card(self, card: dict, target_board_id: str) -> CardMigrationResult:
        """Create one card in the target, then replay its state and dependents."""
        options = self.options
        number = _int_field(card, "number")
        result = CardMigrationResult(source_number=number)

        description = card.get("description") or ""
        html = card.get("description_html") or ""
        if options.include_images and html:
            inline = self.attachments.migrate_inline(html)
            if inline.found:
                description = inline.html
                result.steps.append(inline.step_result("inline_attachments"))

        try:
            created = self.target.create_card(
                target_board_id,
                str(card.get("title") or ""),
                description=description or None,
                created_at=card.get("created_at") or None,
            )
        except RECOVERABLE_ERRORS as e:
            result.error = f"Failed to migrate card #{number}: {e}"
            return result
        target_number = _int_field(created, "number")
        if not target_number:
            result.error = f"Failed to get new card number for card #{number}"
            return result
        result.target_number = target_number

        result.steps.append(self._apply_tags(card, target_number))
        if placement := self._place_in_column(card, target_number):
            result.steps.append(placement)
        if _is_closed(card):
            result.steps.append(
                self._attempt("close", "close card", self.target.close_card, target_number)
            )
        if card.get("golden"):
            result.steps.append(
                self._attempt(
                    "golden", "mark card as golden", self.target.gild_card, target_number
                )
            )
        if number in self.postponed and not _is_closed(card):
            result.steps.append(
                self._attempt(
                    "postpone",
                    f"move card to {PSEUDO_NOT_NOW.name}",
                    self.target.postpone_card,
                    target_number,
                )
            )
        if options.include_comments:
            result.steps.extend(self._migrate_comments(number, target_number))
        if options.include_steps:
            result.steps.append(self._migrate_steps(card, target_number))
        if options.include_images and card.get("image_url"):
            result.steps.append(
                self.attachments.migrate_header_image(card["image_url"], target_number)
            )
        return result

    @staticmethod
    def _attempt(step: str, action: str, func, *args) -> StepResult:
        try:
            func(*args)
        except RECOVERABLE_ERRORS as e:
            return StepResult(step, warning=f"Failed to {action}: {e}")
        return StepResult(step, count=1)

    def _apply_tags(self, card: dict, target_number: int) -> StepResult:
        applied = 0
        failures = []
        for tag in card.get("tags") or []:
            title = tag.get("title") if isinstance(tag, dict) else tag
            if not isinstance(title, str) or not title:
                continue
            try:
                self.target.toggle_tag(target_number, title)
            except RECOVERABLE_ERRORS as e:
                failures.append(f"Failed to apply tag '{title}': {e}")
                continue
            applied += 1
        return StepResult("tags", count=applied, warning="; ".join(failures) or None)

    def _place_in_column(self, card: dict, target_number: int) -> StepResult | None:
        """Triage into the mapped column. Unmapped columns are skipped silently."""
        target_column = self.column_mapping.get(card_column_id(card))
        if not target_column:
            return None
        return self._attempt(
            "column", "move card to column", self.target.triage_card,
            target_number, target_column,
        )

    def _migrate_comments(self, source_number: int, target_number: int) -> list[StepResult]:
        try:
            comments = self.source.list_comments(source_number)
        except RECOVERABLE_ERRORS as e:
            return [StepResult("comments", warning=f"Failed to migrate comments: {e}")]

        created = 0
        images = 0
        failures: list[str] = []
        image_warnings: list[str] = []
        for comment in comments or []:
            if not isinstance(comment, dict):
                continue
            body, html = _comment_body(comment)
            if not body:
                continue

            migrated_images = 0
            if self.options.include_images and html:
                inline = self.attachments.migrate_inline(html)
                body = inline.html
                migrated_images = inline.migrated
                image_warnings.extend(inline.warnings)

            try:
                self.target.create_comment(
                    target_number, body, created_at=comment.get("created_at") or None
                )
            except RECOVERABLE_ERRORS as e:
                failures.append(f"Failed to create comment: {e}")
                continue
            created += 1
            images += migrated_images

        results = [
            StepResult("comments", count=created, warning="; ".join(failures) or None)
        ]
        if images or image_warnings:
            results.append(
                StepResult(
                    "comment_attachments",
                    count=images,
                    warning="; ".join(image_warnings) or None,
                )
            )
        return results

    def _migrate_steps(self, card: dict, target_number: int) -> StepResult:
        items = card.get("steps")
        if items is None:
            # Card listings may omit steps; the card itself carries them.
            try:
                detail = self.source.get_card(_int_field(card, "number"))
            except RECOVERABLE_ERRORS as e:
                return StepResult("steps", warning=f"Failed to migrate steps: {e}")
            items = detail.get("steps") if isinstance(detail, dict) else None

        created = 0
        failures = []
        for item in items or []:
            if not isinstance(item, dict):
                continue
            content = item.get("content") or ""
            if not content:
                continue
            try:
                self.target.create_step(
                    target_number, content, completed=bool(item.get("completed"))
                )
            except RECOVERABLE_ERRORS as e:
                failures.append(f"Failed to create step: {e}")
                continue
            created += 1
        return StepResult("steps", count=created, warning="; ".join(failures) or None)

    def _report(self, result: CardMigrationResult) -> None:
        if result.error:
            console.print(f"    [yellow]Warning:[/yellow] {escape(result.error)}")
        for step in result.warnings:
            console.print(f"    [yellow]Warning:[/yellow] {escape(step.warning)}")

    def _print_dry_run_summary(self, stats: MigrationStats) -> None:
        console.print("\n[bold]=== DRY RUN SUMMARY ===[/bold]")
        console.print(f"Would migrate board: {escape(stats.source_board_name)}")
        table = Table(show_header=False, box=None)
        table.add_row("  Columns to create:", str(stats.columns_to_create))
        table.add_row("  Cards to migrate:", str(stats.cards_to_migrate))
        console.print(table)
        if self.options.include_comments:
            console.print("Comments: will be included")
        if self.options.include_steps:
            console.print("Steps: will be included")
        if self.options.include_images:
            console.print("Images: will be included")
        console.print("\n[yellow]No changes were made.[/yellow]")

    def _print_summary(self, stats: MigrationStats) -> None:
        console.print("\n[bold green]=== MIGRATION COMPLETE ===[/bold green]")
        console.print(
            f"Board created: {escape(stats.target_board_name or '')} "
            f"(ID: {stats.target_board_id})"
        )
        table = Table(show_header=False, box=None)
        table.add_row("  Columns created:", str(stats.columns_created))
        table.add_row("  Cards migrated:", str(stats.cards_created))
        table.add_row("  Tags applied:", str(stats.tags_applied))
        if self.options.include_comments:
            table.add_row("  Comments created:", str(stats.comments_created))
        if self.options.include_steps:
            table.add_row("  Steps created:", str(stats.steps_created))
        if self.options.include_images:
            table.add_row("  Images migrated:", str(stats.images_migrated))
        console.print(table)
        if stats.warning_count:
            console.print(f"[yellow]Warnings: {stats.warning_count}[/yellow]")

        console.print(
            "\n[dim]Note: Card creators and comment authors are now you (the migrating user).[/dim]"
        )
        console.print("[dim]      Card numbers were reassigned by the target account.[/dim]")
        console.print("[dim]      User assignments were not migrated - reassign as needed.[/dim]")


# =============================================================================
# CLI Logic Functions (testable, no console output)
# =============================================================================


@dataclass
class CardListing:
    """Cards returned by a card list query."""

    cards: list[dict]
    next_url: str | None = None

    @property
    def has_next(self) -> bool:
        return bool(self.next_url)


def list_board_columns(client: FizzyClient, board_id: str) -> list[dict]:
    """Columns as the board shows them, pseudo lanes included."""
    columns = client.list_columns(board_id)
    if not isinstance(columns, list):
        raise CliError("Invalid columns response")
    return board_columns(columns)


def show_column(client: FizzyClient, column_id: str, board_id: str | None = None) -> dict:
    """One column; pseudo lanes are answered without a request."""
    if pseudo := parse_pseudo_column(column_id):
        return pseudo.as_dict()
    if not board_id:
        raise InvalidArgumentsError("--board is required for real columns")
    return client.get_column(board_id, column_id)


def list_board_cards(
    client: FizzyClient,
    board_id: str | None = None,
    column: str | None = None,
    indexed_by: str | None = None,
    all_pages: bool = False,
    page: int | None = None,
) -> CardListing:
    """List cards, translating pseudo column filters.

    `maybe` and `done` become server-side `indexed_by` filters; `not-yet`
    and real column ids are filtered client-side, which needs whole pages.
    """
    column = (column or "").strip()
    indexed_by = (indexed_by or "").strip()
    effective_indexed_by = indexed_by
    column_filter = ""
    triage_only = False

    if column:
        pseudo = parse_pseudo_column(column)
        if pseudo is None:
            if indexed_by:
                raise InvalidArgumentsError("cannot combine --indexed-by with --column")
            column_filter = column
        elif pseudo.kind == PSEUDO_TRIAGE.kind:
            if indexed_by:
                raise InvalidArgumentsError(
                    f"cannot combine --indexed-by with --column {pseudo.id}"
                )
            triage_only = True
        else:
            if indexed_by and indexed_by != pseudo.kind:
                raise InvalidArgumentsError(
                    f"cannot combine --indexed-by with --column {pseudo.id}"
                )
            effective_indexed_by = pseudo.kind

    if (triage_only or column_filter) and not all_pages and not page:
        raise InvalidArgumentsError(
            "Filtering by column requires --all (or --page) because it is applied client-side"
        )

    params: dict[str, Any] = {}
    if board_id:
        params["board_ids[]"] = board_id
    if effective_indexed_by:
        params["indexed_by"] = effective_indexed_by
    if page:
        params["page"] = page

    if all_pages:
        listing = CardListing(cards=client.get_all("/cards", params=params))
    else:
        response = client.get_page("/cards", params=params)
        listing = CardListing(cards=list(response.data or []), next_url=response.next_url)

    if triage_only:
        listing.cards = [c for c in listing.cards if not card_column_id(c)]
    elif column_filter:
        listing.cards = [c for c in listing.cards if card_column_id(c) == column_filter]
    return listing


def card_attachments(
    client: FizzyClient, card_number: str, include_comments: bool = False
) -> list[Attachment]:
    """Description attachments, then (optionally) comment attachments."""
    card = client.get_card(card_number)
    if not isinstance(card, dict):
        raise CliError("Invalid card response")
    attachments: list[Attachment] = parse_attachments(card.get("description_html"))
    if include_comments:
        for attachment in extract_comment_attachments(client.list_comments(card_number)):
            attachments.append(replace(attachment, index=len(attachments) + 1))
    return attachments


def comment_attachments(client: FizzyClient, card_number: str) -> list[CommentAttachment]:
    """Attachments embedded in a card's comments."""
    return extract_comment_attachments(client.list_comments(card_number))


def select_attachments(attachments: list[Attachment], index: str | None) -> list[Attachment]:
    """All attachments, or the one at a 1-based index."""
    if not attachments:
        raise NotFoundError("No attachments found")
    if index is None:
        return attachments
    try:
        position = int(index)
    except ValueError:
        raise InvalidArgumentsError("attachment index must be a number") from None
    if position < 1 or position > len(attachments):
        raise InvalidArgumentsError(
            f"attachment index must be between 1 and {len(attachments)}"
        )
    return [attachments[position - 1]]


def download_attachments(
    client: FizzyClient, attachments: list[Attachment], output: str | None = None
) -> list[dict]:
    """Download attachments; returns what was saved where."""
    results = []
    for position, attachment in enumerate(attachments, 1):
        if not attachment.download_url:
            raise NotFoundError(f"No download link for '{attachment.filename}'")
        path = build_output_path(output, attachment.filename, position, len(attachments))
        client.download_file(attachment.download_url, Path(path))
        saved = {
            "filename": attachment.filename,
            "saved_to": path,
            "filesize": attachment.filesize,
        }
        if isinstance(attachment, CommentAttachment):
            saved["comment_id"] = attachment.comment_id
        results.append(saved)
    return results


# =============================================================================
# CLI Commands
# =============================================================================


def _client_for(config: Config, account: str) -> FizzyClient:
    return FizzyClient(config.fizzy_base_url, account, config.fizzy_api_token)


def _account(args: argparse.Namespace, config: Config) -> str:
    account = (args.account or config.fizzy_account_slug or "").lstrip("/")
    if not account:
        raise InvalidArgumentsError(
            "No account given. Use --account or set fizzy.account_slug in the config."
        )
    return account


def cmd_migrate_board(args: argparse.Namespace, config: Config) -> dict:
    """Migrate a board to another account."""
    options = MigrationOptions(
        source_account=(args.source or "").lstrip("/"),
        target_account=(args.target or "").lstrip("/"),
        include_comments=args.include_comments or config.option("include_comments"),
        include_steps=args.include_steps or config.option("include_steps"),
        include_images=args.include_images or config.option("include_images"),
        dry_run=args.dry_run,
    )
    options.validate()

    source = _client_for(config, options.source_account)
    target = _client_for(config, options.target_account)
    identity = _client_for(config, "")
    try:
        migrator = BoardMigrator(options, source, target, identity_client=identity)
        return migrator.run(args.board_id).to_dict()
    finally:
        source.close()
        target.close()
        identity.close()


def cmd_column_list(args: argparse.Namespace, config: Config) -> list[dict]:
    """List a board's columns, pseudo lanes included."""
    client = _client_for(config, _account(args, config))
    try:
        return list_board_columns(client, args.board)
    finally:
        client.close()


def cmd_column_show(args: argparse.Namespace, config: Config) -> dict:
    """Show a column or pseudo lane."""
    if pseudo := parse_pseudo_column(args.column_id):
        return pseudo.as_dict()
    client = _client_for(config, _account(args, config))
    try:
        return show_column(client, args.column_id, args.board)
    finally:
        client.close()


def cmd_card_list(args: argparse.Namespace, config: Config) -> list[dict]:
    """List cards with optional column filter."""
    client = _client_for(config, _account(args, config))
    try:
        listing = list_board_cards(
            client,
            board_id=args.board,
            column=args.column,
            indexed_by=args.indexed_by,
            all_pages=args.all,
            page=args.page,
        )
    finally:
        client.close()
    console.print(f"{len(listing.cards)} cards")
    if listing.has_next:
        console.print(f"[dim]More cards: --page {(args.page or 1) + 1}[/dim]")
    return listing.cards


def cmd_card_attachments_show(args: argparse.Namespace, config: Config) -> list[dict]:
    """List attachments on a card."""
    client = _client_for(config, _account(args, config))
    try:
        attachments = card_attachments(client, args.card_number, args.include_comments)
    finally:
        client.close()
    return [a.as_dict() for a in attachments]


def cmd_card_attachments_download(args: argparse.Namespace, config: Config) -> dict:
    """Download attachments from a card."""
    client = _client_for(config, _account(args, config))
    try:
        attachments = card_attachments(client, args.card_number, args.include_comments)
        selected = select_attachments(attachments, args.index)
        files = download_attachments(client, selected, args.output)
    finally:
        client.close()
    return {"downloaded": len(files), "files": files}


def cmd_comment_attachments_show(args: argparse.Namespace, config: Config) -> list[dict]:
    """List attachments embedded in a card's comments."""
    client = _client_for(config, _account(args, config))
    try:
        attachments = comment_attachments(client, args.card)
    finally:
        client.close()
    console.print(f"{len(attachments)} attachments in comments on card #{args.card}")
    return [a.as_dict() for a in attachments]


def cmd_comment_attachments_download(args: argparse.Namespace, config: Config) -> dict:
    """Download attachments embedded in a card's comments."""
    client = _client_for(config, _account(args, config))
    try:
        attachments = comment_attachments(client, args.card)
        selected = select_attachments(attachments, args.index)
        files = download_attachments(client, selected, args.output)
    finally:
        client.close()
    return {"downloaded": len(files), "files": files}


def print_success(data: Any) -> None:
    """Write the success envelope to stdout."""
    print(json.dumps({"success": True, "data": data}, indent=2, default=str))


def print_error(code: str, message: str, status: int | None = None) -> None:
    """Write the error envelope to stdout."""
    error: dict[str, Any] = {"code": code, "message": message}
    if status:
        error["status"] = status
    print(json.dumps({"success": False, "error": error}, indent=2))


def build_parser() -> argparse.ArgumentParser:
    """Command-line parser."""
    parser = argparse.ArgumentParser(
        prog="fizzy-migrate",
        description="Migrate Fizzy boards between accounts",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help=f"Config file path (default: {CONFIG_FILE})",
    )
    parser.add_argument(
        "--account",
        type=str,
        help="Account slug for card/column commands (default: from config)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # migrate board
    migrate_parser = subparsers.add_parser("migrate", help="Migration tools")
    migrate_sub = migrate_parser.add_subparsers(dest="migrate_command")
    board_parser = migrate_sub.add_parser(
        "board",
        help="Migrate a board to another account",
        description=(
            "Copies the board, its columns and cards (titles, descriptions, "
            "timestamps, tags, state). Card creators, comment authors, card "
            "numbers and user assignments cannot be migrated."
        ),
    )
    board_parser.add_argument("board_id", help="Source board ID")
    board_parser.add_argument(
        "--from", dest="source", type=str, help="Source account slug (required)"
    )
    board_parser.add_argument(
        "--to", dest="target", type=str, help="Target account slug (required)"
    )
    board_parser.add_argument(
        "--include-comments", action="store_true", help="Also migrate card comments"
    )
    board_parser.add_argument(
        "--include-steps", action="store_true", help="Also migrate card steps (to-do items)"
    )
    board_parser.add_argument(
        "--include-images",
        action="store_true",
        help="Also migrate header images and inline attachments",
    )
    board_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be migrated without making changes",
    )
    board_parser.set_defaults(handler=cmd_migrate_board)

    # column list / show
    column_parser = subparsers.add_parser("column", help="Inspect board columns")
    column_sub = column_parser.add_subparsers(dest="column_command")
    column_list = column_sub.add_parser("list", help="List columns for a board")
    column_list.add_argument("--board", required=True, help="Board ID")
    column_list.set_defaults(handler=cmd_column_list)
    column_show = column_sub.add_parser("show", help="Show a column")
    column_show.add_argument("column_id", help="Column ID or pseudo column (not-yet, maybe, done)")
    column_show.add_argument("--board", help="Board ID (real columns only)")
    column_show.set_defaults(handler=cmd_column_show)

    # card list / attachments
    card_parser = subparsers.add_parser("card", help="Inspect cards")
    card_sub = card_parser.add_subparsers(dest="card_command")
    card_list = card_sub.add_parser("list", help="List cards")
    card_list.add_argument("--board", help="Board ID")
    card_list.add_argument(
        "--column", help="Filter by column ID or pseudo column (not-yet, maybe, done)"
    )
    card_list.add_argument("--indexed-by", help="Server-side index (e.g. closed, not_now)")
    card_list.add_argument("--all", action="store_true", help="Fetch all pages")
    card_list.add_argument("--page", type=int, help="Page number")
    card_list.set_defaults(handler=cmd_card_list)

    card_attachments_parser = card_sub.add_parser("attachments", help="Card attachments")
    card_attachments_sub = card_attachments_parser.add_subparsers(dest="attachments_command")
    show = card_attachments_sub.add_parser("show", help="List attachments on a card")
    show.add_argument("card_number", help="Card number")
    show.add_argument(
        "--include-comments", action="store_true", help="Also include attachments from comments"
    )
    show.set_defaults(handler=cmd_card_attachments_show)
    download = card_attachments_sub.add_parser("download", help="Download attachments")
    download.add_argument("card_number", help="Card number")
    download.add_argument("index", nargs="?", help="Attachment index (1-based); omit for all")
    download.add_argument(
        "-o", "--output", help="Output filename (single file) or prefix (multiple files)"
    )
    download.add_argument(
        "--include-comments", action="store_true", help="Also include attachments from comments"
    )
    download.set_defaults(handler=cmd_card_attachments_download)

    # comment attachments
    comment_parser = subparsers.add_parser("comment", help="Inspect comments")
    comment_sub = comment_parser.add_subparsers(dest="comment_command")
    comment_attachments_parser = comment_sub.add_parser(
        "attachments", help="Attachments embedded in comments"
    )
    comment_attachments_sub = comment_attachments_parser.add_subparsers(
        dest="attachments_command"
    )
    show = comment_attachments_sub.add_parser("show", help="List attachments in comments")
    show.add_argument("--card", required=True, help="Card number")
    show.set_defaults(handler=cmd_comment_attachments_show)
    download = comment_attachments_sub.add_parser(
        "download", help="Download attachments from comments"
    )
    download.add_argument("index", nargs="?", help="Attachment index (1-based); omit for all")
    download.add_argument("--card", required=True, help="Card number")
    download.add_argument(
        "-o", "--output", help="Output filename (single file) or prefix (multiple files)"
    )
    download.set_defaults(handler=cmd_comment_attachments_download)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 0

    try:
        config = Config.load(args.config)
    except FileNotFoundError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        print_error(CliError.code, str(e))
        return CliError.exit_code

    if not config.fizzy_api_token:
        console.print("[red]API token not set![/red]")
        console.print("Set FIZZY_API_TOKEN environment variable.")
        print_error(CliError.code, "API token not set")
        return CliError.exit_code

    try:
        data = handler(args, config)
    except CliError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        print_error(e.code, str(e))
        return e.exit_code
    except httpx.HTTPStatusError as e:
        console.print(f"[red]API error: {e.response.status_code}[/red]")
        if args.verbose:
            console.print(escape(e.response.text))
        print_error("api_error", str(e), e.response.status_code)
        return 1
    except httpx.HTTPError as e:
        console.print(f"[red]Connection failed: {escape(str(e))}[/red]")
        print_error("network_error", str(e))
        return 1

    print_success(data)
    return 0


if __name__ == "__main__":
    sys.exit(main())
