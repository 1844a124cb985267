"""Tests for CLI logic functions."""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from fizzy_migrate import (
    ApiResponse,
    Attachment,
    CommentAttachment,
    InvalidArgumentsError,
    NotFoundError,
    card_attachments,
    comment_attachments,
    download_attachments,
    list_board_cards,
    list_board_columns,
    main,
    select_attachments,
    show_column,
)

# =============================================================================
# Test Fixtures
# =============================================================================


def inline(filename, sgid="s", blob="b"):
    return (
        f'<action-text-attachment sgid="{sgid}" filename="{filename}">'
        f'<a href="/123/rails/active_storage/blobs/redirect/{blob}/{filename}">x</a>'
        "</action-text-attachment>"
    )


CARDS = [
    {"number": 1, "column_id": "col-a"},
    {"number": 2, "column": {"id": "col-b"}},
    {"number": 3},
    {"number": 4, "column_id": ""},
]


@pytest.fixture
def client():
    """Mock client serving one page of cards."""
    client = MagicMock()
    client.get_all.return_value = list(CARDS)
    client.get_page.return_value = ApiResponse(data=list(CARDS), next_url="http://test/next")
    return client


@pytest.fixture
def config_file(tmp_path):
    config_file = tmp_path / ".fizzy-migrate.yml"
    config_file.write_text(
        'fizzy:\n  base_url: http://test\n  api_token: token\n  account_slug: "123"\n'
    )
    return config_file


def run_main(capsys, *argv):
    """Run the CLI and decode its stdout envelope."""
    exit_code = main(list(argv))
    return exit_code, json.loads(capsys.readouterr().out)


# =============================================================================
# Columns
# =============================================================================


class TestColumns:
    """Tests for column listing and lookup."""

    def test_list_board_columns(self):
        client = MagicMock()
        client.list_columns.return_value = [{"id": "c1", "name": "Doing"}]

        columns = list_board_columns(client, "board-1")

        assert [c["id"] for c in columns] == ["not-yet", "maybe", "c1", "done"]
        client.list_columns.assert_called_once_with("board-1")

    def test_show_pseudo_column_without_request(self):
        client = MagicMock()

        column = show_column(client, "Done")

        assert column == {"id": "done", "name": "Done", "kind": "closed", "pseudo": True}
        assert client.method_calls == []

    def test_show_real_column(self):
        client = MagicMock()
        client.get_column.return_value = {"id": "c1", "name": "Doing"}

        assert show_column(client, "c1", "board-1")["name"] == "Doing"
        client.get_column.assert_called_once_with("board-1", "c1")

    def test_show_real_column_requires_board(self):
        with pytest.raises(InvalidArgumentsError, match="--board"):
            show_column(MagicMock(), "c1")


# =============================================================================
# Card listing
# =============================================================================


class TestListBoardCards:
    """Tests for list_board_cards filter translation."""

    def test_plain_listing_is_one_page(self, client):
        listing = list_board_cards(client, board_id="board-1")

        assert len(listing.cards) == 4
        assert listing.has_next
        client.get_page.assert_called_once_with("/cards", params={"board_ids[]": "board-1"})

    def test_maybe_becomes_server_filter(self, client):
        """Test the not-now lane is filtered by the server."""
        list_board_cards(client, board_id="board-1", column="maybe")

        client.get_page.assert_called_once_with(
            "/cards", params={"board_ids[]": "board-1", "indexed_by": "not_now"}
        )

    def test_done_becomes_server_filter(self, client):
        list_board_cards(client, column="DONE", all_pages=True)

        client.get_all.assert_called_once_with("/cards", params={"indexed_by": "closed"})

    def test_matching_indexed_by_allowed(self, client):
        list_board_cards(client, column="done", indexed_by="closed")

        client.get_page.assert_called_once_with("/cards", params={"indexed_by": "closed"})

    def test_conflicting_indexed_by(self, client):
        with pytest.raises(InvalidArgumentsError, match="--indexed-by"):
            list_board_cards(client, column="maybe", indexed_by="closed")

    def test_triage_filters_unplaced_cards(self, client):
        """Test not-yet keeps cards without a column."""
        listing = list_board_cards(client, board_id="board-1", column="not-yet", all_pages=True)

        assert [c["number"] for c in listing.cards] == [3, 4]
        assert not listing.has_next

    def test_triage_conflicts_with_indexed_by(self, client):
        with pytest.raises(InvalidArgumentsError, match="not-yet"):
            list_board_cards(client, column="triage", indexed_by="closed", all_pages=True)

    def test_real_column_filter(self, client):
        """Test a real column id filters client-side on either column shape."""
        listing = list_board_cards(client, column="col-b", page=2)

        assert [c["number"] for c in listing.cards] == [2]
        client.get_page.assert_called_once_with("/cards", params={"page": 2})

    def test_real_column_conflicts_with_indexed_by(self, client):
        with pytest.raises(InvalidArgumentsError):
            list_board_cards(client, column="col-a", indexed_by="closed", all_pages=True)

    @pytest.mark.parametrize("column", ["not-yet", "col-a"])
    def test_client_side_filter_requires_all_or_page(self, client, column):
        with pytest.raises(InvalidArgumentsError, match="--all"):
            list_board_cards(client, column=column)
        client.get_page.assert_not_called()
        client.get_all.assert_not_called()


# =============================================================================
# Attachments
# =============================================================================


class TestCardAttachments:
    """Tests for card and comment attachment listing."""

    def test_description_only(self):
        client = MagicMock()
        client.get_card.return_value = {"description_html": inline("a.png") + inline("b.png")}

        attachments = card_attachments(client, "42")

        assert [(a.index, a.filename) for a in attachments] == [(1, "a.png"), (2, "b.png")]
        client.list_comments.assert_not_called()

    def test_comment_attachments_continue_numbering(self):
        """Test comment attachments follow description attachments."""
        client = MagicMock()
        client.get_card.return_value = {"description_html": inline("a.png")}
        client.list_comments.return_value = [
            {"id": "c1", "body": {"html": inline("b.png")}},
            {"id": "c2", "body": {"html": inline("c.png")}},
        ]

        attachments = card_attachments(client, "42", include_comments=True)

        assert [(a.index, a.filename) for a in attachments] == [
            (1, "a.png"),
            (2, "b.png"),
            (3, "c.png"),
        ]
        assert isinstance(attachments[2], CommentAttachment)
        assert attachments[2].comment_id == "c2"

    def test_comment_fetch_error_propagates(self):
        client = MagicMock()
        client.get_card.return_value = {"description_html": ""}
        client.list_comments.side_effect = httpx.ConnectError("boom")

        with pytest.raises(httpx.ConnectError):
            card_attachments(client, "42", include_comments=True)

    def test_comment_attachments(self):
        client = MagicMock()
        client.list_comments.return_value = [{"id": "c1", "body": {"html": inline("x.pdf")}}]

        [attachment] = comment_attachments(client, "42")

        assert attachment.filename == "x.pdf"
        client.list_comments.assert_called_once_with("42")


class TestSelectAttachments:
    """Tests for select_attachments."""

    ATTACHMENTS = [Attachment(index=1, filename="a"), Attachment(index=2, filename="b")]

    def test_all(self):
        assert select_attachments(self.ATTACHMENTS, None) == self.ATTACHMENTS

    def test_by_index(self):
        assert select_attachments(self.ATTACHMENTS, "2")[0].filename == "b"

    @pytest.mark.parametrize("index", ["0", "3", "-1", "two"])
    def test_bad_index(self, index):
        with pytest.raises(InvalidArgumentsError):
            select_attachments(self.ATTACHMENTS, index)

    def test_nothing_to_select(self):
        with pytest.raises(NotFoundError):
            select_attachments([], None)


class TestDownloadAttachments:
    """Tests for download_attachments."""

    def test_downloads_with_prefix(self, tmp_path):
        client = MagicMock()
        attachments = [
            Attachment(index=1, filename="a.png", download_url="/123/blob/a", filesize=3),
            CommentAttachment(index=2, filename="b.pdf", download_url="/123/blob/b", comment_id="c1"),
        ]
        prefix = str(tmp_path / "shot")

        files = download_attachments(client, attachments, prefix)

        assert [f["saved_to"] for f in files] == [f"{prefix}_1.png", f"{prefix}_2.pdf"]
        assert files[1]["comment_id"] == "c1"
        client.download_file.assert_any_call("/123/blob/a", Path(f"{prefix}_1.png"))

    def test_missing_link(self):
        with pytest.raises(NotFoundError, match="a.png"):
            download_attachments(MagicMock(), [Attachment(index=1, filename="a.png")])


# =============================================================================
# main()
# =============================================================================


class TestMain:
    """Tests for the command-line entry point."""

    def test_migrate_requires_target(self, capsys, config_file):
        """Test argument errors exit 2 with an error envelope."""
        exit_code, output = run_main(
            capsys, "--config", str(config_file), "migrate", "board", "b1", "--from", "111"
        )

        assert exit_code == 2
        assert output["success"] is False
        assert output["error"]["code"] == "invalid_args"
        assert "--to" in output["error"]["message"]

    def test_migrate_same_account(self, capsys, config_file):
        exit_code, output = run_main(
            capsys,
            "--config", str(config_file),
            "migrate", "board", "b1", "--from", "111", "--to", "111",
        )

        assert exit_code == 2
        assert "different" in output["error"]["message"]

    def test_missing_config(self, capsys, tmp_path):
        exit_code, output = run_main(
            capsys, "--config", str(tmp_path / "missing.yml"), "column", "show", "done"
        )

        assert exit_code == 1
        assert output["success"] is False

    def test_missing_token(self, capsys, tmp_path):
        config_file = tmp_path / ".fizzy-migrate.yml"
        config_file.write_text("fizzy:\n  base_url: http://test\n")

        exit_code, output = run_main(capsys, "--config", str(config_file), "column", "show", "done")

        assert exit_code == 1
        assert "token" in output["error"]["message"]

    def test_column_show_pseudo(self, capsys, config_file):
        exit_code, output = run_main(capsys, "--config", str(config_file), "column", "show", "maybe")

        assert exit_code == 0
        assert output == {
            "success": True,
            "data": {"id": "maybe", "name": "Maybe?", "kind": "not_now", "pseudo": True},
        }

    def test_column_list(self, capsys, config_file, httpx_mock):
        """Test column list calls the API and adds the pseudo lanes."""
        httpx_mock.add_response(
            url="http://test/123/boards/b1/columns", json=[{"id": "c1", "name": "Doing"}]
        )

        exit_code, output = run_main(
            capsys, "--config", str(config_file), "column", "list", "--board", "b1"
        )

        assert exit_code == 0
        assert [c["id"] for c in output["data"]] == ["not-yet", "maybe", "c1", "done"]

    def test_account_override(self, capsys, config_file, httpx_mock):
        httpx_mock.add_response(url="http://test/999/boards/b1/columns", json=[])

        exit_code, _ = run_main(
            capsys,
            "--config", str(config_file), "--account", "/999",
            "column", "list", "--board", "b1",
        )

        assert exit_code == 0

    def test_api_error(self, capsys, config_file, httpx_mock):
        """Test HTTP errors become an api_error envelope with exit 1."""
        httpx_mock.add_response(status_code=404, text="missing")

        exit_code, output = run_main(
            capsys, "--config", str(config_file), "column", "list", "--board", "b1"
        )

        assert exit_code == 1
        assert output["error"]["code"] == "api_error"
        assert output["error"]["status"] == 404

    def test_card_attachments_show(self, capsys, config_file, httpx_mock):
        httpx_mock.add_response(
            url="http://test/123/cards/42", json={"description_html": inline("a.png")}
        )

        exit_code, output = run_main(
            capsys, "--config", str(config_file), "card", "attachments", "show", "42"
        )

        assert exit_code == 0
        assert output["data"][0]["filename"] == "a.png"
        assert output["data"][0]["download_url"].endswith("?disposition=attachment")

    def test_card_attachments_download_bad_index(self, capsys, config_file, httpx_mock):
        httpx_mock.add_response(
            url="http://test/123/cards/42", json={"description_html": inline("a.png")}
        )

        exit_code, output = run_main(
            capsys, "--config", str(config_file), "card", "attachments", "download", "42", "5"
        )

        assert exit_code == 2
        assert "between 1 and 1" in output["error"]["message"]

    def test_comment_attachments_none(self, capsys, config_file, httpx_mock):
        """Test downloading from comments without attachments is not-found."""
        httpx_mock.add_response(url="http://test/123/cards/42/comments", json=[])

        exit_code, output = run_main(
            capsys,
            "--config", str(config_file),
            "comment", "attachments", "download", "--card", "42",
        )

        assert exit_code == 1
        assert output["error"]["code"] == "not_found"
