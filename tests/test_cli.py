import json
from datetime import date
from unittest.mock import ANY, AsyncMock, MagicMock

from typer.testing import CliRunner

from libdesk.config import settings
from libdesk.document import Document
from libdesk.library import Library
from libdesk.main import app, check_overdue_books, menu_search
from libdesk.services.google_books_service import GoogleBookData, GoogleBooksAPIError, GoogleBooksService

runner = CliRunner()


def add_dune(quantity="3"):
    return runner.invoke(app, ["doc", "add", "B1", "Dune", "Frank Herbert", quantity, "--subject", "Fiction"])


def test_list_no_documents(data_dir):
    result = runner.invoke(app, ["doc", "list"])
    assert result.exit_code == 0
    assert "No documents in library." in result.stdout


def test_add_and_list_documents(data_dir):
    result = add_dune()
    assert result.exit_code == 0
    assert "Document added: Dune (3 copies in stock)" in result.stdout

    result = runner.invoke(app, ["doc", "list"])
    assert "B1 - Dune by Frank Herbert (3 copies) [Fiction]" in result.stdout
    assert "B1,Dune,Frank Herbert,3,Fiction" in (data_dir / "documents.csv").read_text()


def test_list_json_output(data_dir):
    add_dune()

    result = runner.invoke(app, ["--output", "json", "doc", "list"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload[0]["id"] == "B1"
    assert payload[0]["quantity"] == 3


def test_list_by_subject_and_subjects(data_dir):
    add_dune()
    runner.invoke(app, ["doc", "add", "B2", "Sapiens", "Harari", "1", "-s", "History"])

    result = runner.invoke(app, ["doc", "list", "--subject", "History"])
    assert "Sapiens" in result.stdout
    assert "Dune" not in result.stdout

    result = runner.invoke(app, ["doc", "subjects"])
    assert result.stdout.split() == ["Fiction", "History"]


def test_find_document(data_dir):
    add_dune()

    result = runner.invoke(app, ["doc", "find", "dune"])
    assert result.exit_code == 0
    assert "ID: B1\nTitle: Dune" in result.stdout

    result = runner.invoke(app, ["doc", "find", "Missing"])
    assert result.exit_code == 1
    assert "Document not found in library." in result.stdout


def test_remove_document(data_dir):
    add_dune()

    result = runner.invoke(app, ["doc", "remove", "B1", "--quantity", "2"])
    assert result.exit_code == 0
    assert "Removed 2 copies of Dune" in result.stdout

    result = runner.invoke(app, ["doc", "remove", "B1", "-q", "5"])
    assert result.exit_code == 1
    assert "Error: Quantity to remove exceeds available copies (1)." in result.stdout


def test_update_document(data_dir):
    add_dune()

    result = runner.invoke(app, ["doc", "update", "B1", "--quantity", "8", "--title", "Dune Messiah"])
    assert result.exit_code == 0
    assert "Updated successfully for Dune Messiah" in result.stdout
    assert Library().find_by_id("B1").quantity == 8

    result = runner.invoke(app, ["doc", "update", "B1"])
    assert result.exit_code == 1
    assert "Nothing to update" in result.stdout


def test_import_document(data_dir, monkeypatch):
    add_mock = MagicMock(return_value=Document("9780441013593", "Dune", "Frank Herbert", 2))
    monkeypatch.setattr(Library, "add_document_from_catalog", add_mock)

    result = runner.invoke(app, ["doc", "import", "9780441013593", "--quantity", "2"])

    assert result.exit_code == 0
    assert "Successfully added: Dune by Frank Herbert" in result.stdout
    add_mock.assert_called_once_with("9780441013593", quantity=2, subject="", service=ANY)


def test_import_document_not_found(data_dir, monkeypatch):
    monkeypatch.setattr(Library, "add_document_from_catalog",
                        MagicMock(side_effect=LookupError("No catalog entry for ISBN 0000000000.")))

    result = runner.invoke(app, ["doc", "import", "0000000000"])

    assert result.exit_code == 1
    assert "Error: No catalog entry for ISBN 0000000000." in result.stdout


def test_user_add_and_list(data_dir):
    result = runner.invoke(app, ["user", "add", "alice", "Alice   Smith"])
    assert result.exit_code == 0
    assert "User Alice Smith added successfully with ID alice" in result.stdout

    result = runner.invoke(app, ["user", "add", "alice", "Someone Else"])
    assert result.exit_code == 1
    assert "already exists" in result.stdout

    result = runner.invoke(app, ["user", "list"])
    assert "alice - Alice Smith (0 borrowed)" in result.stdout


def test_user_add_rejects_bad_input(data_dir):
    result = runner.invoke(app, ["user", "add", "al ice", "Alice"])
    assert result.exit_code == 1
    assert "single word" in result.stdout

    result = runner.invoke(app, ["user", "add", "bob", "12345"])
    assert result.exit_code == 1


def test_borrow_and_return_with_rating(data_dir):
    add_dune()
    runner.invoke(app, ["user", "add", "alice", "Alice"])

    result = runner.invoke(app, ["borrow", "alice", "B1", "2", "--on", "2024-01-01"])
    assert result.exit_code == 0
    assert "alice borrowed 2 copies of Dune" in result.stdout
    assert "Due on 2024-01-08" in result.stdout

    result = runner.invoke(app, ["user", "info"])
    assert "User ID: alice, Name: Alice, Borrowed Books: 1" in result.stdout
    assert "- Dune (2 copies)" in result.stdout

    result = runner.invoke(app, ["return", "alice", "B1", "2", "--rating", "4", "--comment", "Sandy"])
    assert result.exit_code == 0
    assert "alice returned 2 copies of Dune" in result.stdout
    assert 'Thank you for rating "Dune" with 4 stars!' in result.stdout

    result = runner.invoke(app, ["ratings", "--title", "Dune"])
    assert "Rating: 4 stars" in result.stdout
    assert "Comment: Sandy" in result.stdout
    assert "Average Rating: 4.0 stars" in result.stdout


def test_borrow_errors_exit_nonzero(data_dir):
    add_dune("1")
    runner.invoke(app, ["user", "add", "alice", "Alice"])

    result = runner.invoke(app, ["borrow", "alice", "B1", "2"])
    assert result.exit_code == 1
    assert "Error: Not enough copies available. Only 1 left." in result.stdout

    result = runner.invoke(app, ["borrow", "nobody", "B1", "1"])
    assert result.exit_code == 1
    assert "Error: User nobody not found." in result.stdout

    result = runner.invoke(app, ["return", "alice", "B1", "1"])
    assert result.exit_code == 1
    assert "Only 0 copies borrowed" in result.stdout


def test_rating_out_of_range_rejected(data_dir):
    result = runner.invoke(app, ["return", "alice", "B1", "1", "--rating", "9"])
    assert result.exit_code == 2


def test_overdue_loans_and_stats(data_dir):
    add_dune()
    runner.invoke(app, ["user", "add", "alice", "Alice"])
    runner.invoke(app, ["borrow", "alice", "B1", "1", "--on", "2000-01-01"])

    result = runner.invoke(app, ["overdue"])
    assert "Overdue Books:" in result.stdout
    assert "Borrowed on: 2000-01-01" in result.stdout

    result = runner.invoke(app, ["loans"])
    assert "User: alice (Alice)" in result.stdout
    assert "- Dune (1 copies) - Overdue by" in result.stdout

    result = runner.invoke(app, ["stats"])
    assert "Total Documents: 1" in result.stdout
    assert "Copies On Loan: 1" in result.stdout
    assert "Overdue Loans: 1" in result.stdout


def test_no_overdue_and_no_ratings(data_dir):
    assert "No overdue books." in runner.invoke(app, ["overdue"]).stdout
    assert "No book ratings available." in runner.invoke(app, ["ratings"]).stdout


def test_search(data_dir, monkeypatch):
    monkeypatch.setattr(settings, "enable_google_books", True)
    search_mock = AsyncMock(return_value=[GoogleBookData(isbn="1", title="Dune", authors=["Frank Herbert"])])
    monkeypatch.setattr(GoogleBooksService, "search_books", search_mock)

    result = runner.invoke(app, ["search", "dune", "--limit", "2"])

    assert result.exit_code == 0
    assert 'Search Results for "dune":' in result.stdout
    assert "Authors: Frank Herbert" in result.stdout
    search_mock.assert_awaited_once_with("dune", max_results=2)


def test_search_failure(data_dir, monkeypatch):
    monkeypatch.setattr(settings, "enable_google_books", True)
    monkeypatch.setattr(GoogleBooksService, "search_books",
                        AsyncMock(side_effect=GoogleBooksAPIError("Google Books returned HTTP 503")))

    result = runner.invoke(app, ["search", "dune"])

    assert result.exit_code == 1
    assert "Error: Google Books returned HTTP 503" in result.stdout


def test_search_disabled(data_dir, monkeypatch):
    monkeypatch.setattr(settings, "enable_google_books", False)

    result = runner.invoke(app, ["search", "dune"])

    assert result.exit_code == 0
    assert "Google Books search is disabled." in result.stdout


def test_account_register_and_login(data_dir):
    result = runner.invoke(app, ["account", "register", "admin"], input="s3cret\ns3cret\n")
    assert result.exit_code == 0
    assert "Account admin registered." in result.stdout

    result = runner.invoke(app, ["account", "register", "admin"], input="other\nother\n")
    assert result.exit_code == 1
    assert "Username admin is already taken." in result.stdout

    result = runner.invoke(app, ["account", "login", "admin"], input="s3cret\n")
    assert result.exit_code == 0
    assert "Welcome, admin!" in result.stdout

    result = runner.invoke(app, ["account", "login", "admin", "--password", "wrong"])
    assert result.exit_code == 1
    assert "Invalid username or password." in result.stdout


def test_check_overdue_books_alerts(lib, monkeypatch):
    lib.add_document(Document("B1", "Dune", "Frank Herbert", 1))
    lib.add_user("alice", "Alice")
    printed = []
    monkeypatch.setattr("libdesk.main._report", lambda title, message, style="green": printed.append((title, message)))

    check_overdue_books(lib)
    assert printed == []

    lib.borrow_document("alice", "B1", 1, on=date(2000, 1, 1))
    check_overdue_books(lib)

    assert printed[0][0] == "Overdue Alert"
    assert "Book: Dune (1 copies)" in printed[0][1]


def test_menu_search_reports_result(lib, monkeypatch):
    monkeypatch.setattr(settings, "enable_google_books", True)
    monkeypatch.setattr("libdesk.main.Prompt.ask", lambda *args, **kwargs: "dune")
    monkeypatch.setattr(GoogleBooksService, "search_books", AsyncMock(return_value=[GoogleBookData(isbn="1", title="Dune")]))
    printed = []
    monkeypatch.setattr("libdesk.main._report", lambda title, message, style="green": printed.append((title, message)))

    menu_search(lib)

    assert printed[0][0] == "Google Books Result"
    assert printed[0][1].startswith('Search Results for "dune":')
