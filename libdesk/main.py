import asyncio
import logging
import sys
from datetime import date
from functools import wraps
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from libdesk import storage
from libdesk.accounts import AccountManager
from libdesk.config import settings
from libdesk.document import Document
from libdesk.library import Library
from libdesk.services.google_books_service import GoogleBooksAPIError, GoogleBooksService, format_search_results
from libdesk.utils.ui_helpers import (
    print_borrowing_statistics,
    print_documents,
    print_overdue,
    print_ratings,
    print_stats_result,
    print_user_info,
    set_output_mode,
)
from libdesk.utils.validators import TextValidator, parse_quantity, validate_rating

APP_NAME = settings.app_name

console = Console()
logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose or settings.debug else getattr(logging, settings.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


class LibraryManager:
    """Process-wide Library instance, rebuilt when the data directory changes."""
    _instance: Optional[Library] = None
    _data_dir_snapshot: Optional[str] = None

    @classmethod
    def get_instance(cls) -> Library:
        current_dir = str(storage.DATA_DIR)
        if cls._instance is None or current_dir != cls._data_dir_snapshot:
            cls._instance = Library()
            cls._data_dir_snapshot = current_dir
            logger.debug("Library loaded from %s", current_dir)
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None
        cls._data_dir_snapshot = None


def handle_domain_errors(func):
    """Report LookupError/ValueError from the library as 'Error: ...' and exit with status 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (LookupError, ValueError, GoogleBooksAPIError) as e:
            print(f"Error: {e}")
            raise typer.Exit(code=1)
    return wrapper


# --- Typer CLI Application ---
app = typer.Typer(help="Library desk CLI")
doc_app = typer.Typer(help="Manage documents")
user_app = typer.Typer(help="Manage library users")
account_app = typer.Typer(help="Admin accounts")
app.add_typer(doc_app, name="doc")
app.add_typer(user_app, name="user")
app.add_typer(account_app, name="account")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Global options for the CLI (output mode, logging)."""
    configure_logging(verbose)
    if output:
        set_output_mode(output)


# --- Documents ---
@doc_app.command("add")
@handle_domain_errors
def cli_doc_add(
    doc_id: str,
    title: str,
    author: str,
    quantity: int,
    subject: str = typer.Option("", "--subject", "-s", help="Subject / shelf"),
):
    """Add copies of a document (existing ids get their quantity increased)."""
    lib = LibraryManager.get_instance()
    doc = lib.add_document(Document(doc_id, title, author, quantity, subject))
    print(f"Document added: {doc.title} ({doc.quantity} copies in stock)")


@doc_app.command("import")
@handle_domain_errors
def cli_doc_import(
    isbn: str,
    quantity: int = typer.Option(1, "--quantity", "-q", help="Copies to add"),
    subject: str = typer.Option("", "--subject", "-s", help="Subject (defaults to the catalog category)"),
):
    """Add a document using Google Books metadata for an ISBN."""
    lib = LibraryManager.get_instance()
    doc = lib.add_document_from_catalog(isbn, quantity=quantity, subject=subject, service=GoogleBooksService())
    print(f"Successfully added: {doc.title} by {doc.author}")


@doc_app.command("remove")
@handle_domain_errors
def cli_doc_remove(
    id_or_title: str,
    quantity: Optional[int] = typer.Option(None, "--quantity", "-q", help="Copies to remove (default: all)"),
):
    """Remove copies of a document by id or title."""
    lib = LibraryManager.get_instance()
    doc = lib.find_document(id_or_title)
    title = doc.title if doc else id_or_title
    removed = lib.remove_document(id_or_title, quantity)
    print(f"Removed {removed} copies of {title}")


@doc_app.command("update")
@handle_domain_errors
def cli_doc_update(
    doc_id: str,
    quantity: Optional[int] = typer.Option(None, "--quantity", "-q", help="New stock quantity"),
    title: Optional[str] = typer.Option(None, "--title", "-t"),
    author: Optional[str] = typer.Option(None, "--author", "-a"),
    subject: Optional[str] = typer.Option(None, "--subject", "-s"),
):
    """Update the stock quantity and/or descriptive fields of a document."""
    lib = LibraryManager.get_instance()
    if quantity is None and title is None and author is None and subject is None:
        raise ValueError("Nothing to update. Provide --quantity, --title, --author or --subject.")
    if quantity is not None:
        doc = lib.update_quantity(doc_id, quantity)
    if title is not None or author is not None or subject is not None:
        doc = lib.update_document(doc_id, title=title, author=author, subject=subject)
    print(f"Updated successfully for {doc.title}")


@doc_app.command("find")
def cli_doc_find(key: str):
    """Find a document by id or title."""
    lib = LibraryManager.get_instance()
    doc = lib.find_document(key)
    if doc is None:
        print("Document not found in library.")
        raise typer.Exit(code=1)
    print(doc.get_info())


@doc_app.command("list")
def cli_doc_list(subject: Optional[str] = typer.Option(None, "--subject", "-s", help="Only this subject")):
    """List documents, optionally filtered by subject."""
    lib = LibraryManager.get_instance()
    if subject:
        print_documents(lib.documents_by_subject(subject), empty_message=f"No documents with subject {subject}.")
    else:
        print_documents(lib.list_documents())


@doc_app.command("subjects")
def cli_doc_subjects():
    """List the subjects present in the library."""
    subjects = LibraryManager.get_instance().subjects()
    if not subjects:
        print("No subjects available in library.")
        return
    for subject in subjects:
        print(subject)


# --- Users ---
@user_app.command("add")
@handle_domain_errors
def cli_user_add(username: str, name: str):
    """Register a library user."""
    if not TextValidator.validate_identifier(username):
        raise ValueError("User ID must be a single word.")
    if not TextValidator.validate_name(name):
        raise ValueError("User name must contain letters.")
    lib = LibraryManager.get_instance()
    user = lib.add_user(username, TextValidator.sanitize_field(name))
    print(f"User {user.name} added successfully with ID {user.username}")


@user_app.command("list")
def cli_user_list():
    """List users with the number of copies they hold."""
    users = LibraryManager.get_instance().list_users()
    if not users:
        print("No users available.")
        return
    for user in users:
        print(f"{user.username} - {user.name} ({user.total_borrowed} borrowed)")


@user_app.command("info")
def cli_user_info():
    """Show every user with their borrowed documents."""
    lib = LibraryManager.get_instance()
    print_user_info(lib.list_users(), lib)


# --- Circulation ---
@app.command("borrow")
@handle_domain_errors
def cli_borrow(
    user_id: str,
    doc_id: str,
    quantity: int,
    on: Optional[str] = typer.Option(None, "--on", help="Borrow date YYYY-MM-DD (default: today)"),
):
    """Lend copies of a document to a user."""
    lib = LibraryManager.get_instance()
    borrow_date = date.fromisoformat(on) if on else None
    record = lib.borrow_document(user_id, doc_id, quantity, on=borrow_date)
    doc = lib.find_by_id(record.doc_id)
    print(f"{record.user_id} borrowed {record.quantity} copies of {doc.title}")
    print(f"Due on {record.due_date(lib.loan_days).isoformat()}")


@app.command("return")
@handle_domain_errors
def cli_return(
    user_id: str,
    doc_id: str,
    quantity: int,
    rating: Optional[int] = typer.Option(None, "--rating", "-r", min=1, max=5, help="Rate the book 1-5"),
    comment: str = typer.Option("", "--comment", "-c", help="Optional review comment"),
):
    """Take back copies from a user, optionally recording a rating."""
    lib = LibraryManager.get_instance()
    lib.return_document(user_id, doc_id, quantity)
    doc = lib.find_by_id(doc_id)
    print(f"{user_id} returned {quantity} copies of {doc.title}")
    if rating is not None:
        entry = lib.rate_document(doc.title, user_id, rating, TextValidator.sanitize_field(comment))
        print(f'Thank you for rating "{entry.book_title}" with {entry.rating} stars!')


@app.command("ratings")
def cli_ratings(title: Optional[str] = typer.Option(None, "--title", "-t", help="Only ratings for this title")):
    """Show book ratings."""
    lib = LibraryManager.get_instance()
    if title:
        print_ratings(lib.ratings_for(title), lib.average_rating(title))
    else:
        print_ratings(lib.ratings())


@app.command("stats")
def cli_stats():
    """Show library totals."""
    print_stats_result(LibraryManager.get_instance().get_statistics())


@app.command("loans")
def cli_loans():
    """Show per-user loans with days remaining or overdue."""
    print_borrowing_statistics(LibraryManager.get_instance().borrowing_statistics())


@app.command("overdue")
def cli_overdue():
    """List loans older than the loan period."""
    print_overdue(LibraryManager.get_instance().overdue_records())


@app.command("search")
@handle_domain_errors
def cli_search(
    query: str = typer.Argument(..., help="Search terms"),
    limit: int = typer.Option(settings.google_books_max_results, "--limit", "-l", help="Maximum results"),
):
    """Search the Google Books catalog."""
    if not settings.enable_google_books:
        print("Google Books search is disabled.")
        return
    service = GoogleBooksService()
    books = asyncio.run(service.search_books(query, max_results=limit))
    print(format_search_results(query, books, limit=limit))


# --- Accounts ---
@account_app.command("register")
def cli_account_register(
    username: str,
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Create an admin account."""
    if AccountManager().register(username, password):
        print(f"Account {username} registered.")
    else:
        print(f"Username {username} is already taken.")
        raise typer.Exit(code=1)


@account_app.command("login")
def cli_account_login(
    username: str,
    password: str = typer.Option(..., prompt=True, hide_input=True),
):
    """Check admin credentials."""
    user = AccountManager().login(username, password)
    if user is None:
        print("Invalid username or password.")
        raise typer.Exit(code=1)
    print(f"Welcome, {user.name}!")


@app.command("menu")
def cli_menu():
    """Open the interactive desk menu."""
    run_menu()


# --- Interactive menu ---
def _report(title: str, message: str, style: str = "green") -> None:
    console.print(Panel.fit(escape(message), title=title, border_style=style))


def _error(message: str) -> None:
    _report("Error", message, style="red")


def check_overdue_books(lib: Library) -> None:
    """Alert about overdue loans when the desk opens."""
    loans = lib.overdue_records()
    if not loans:
        return
    lines = [
        f"User: {loan.user.name} (ID: {loan.user.username})\n"
        f"Book: {loan.document.title} ({loan.record.quantity} copies)\n"
        f"Borrowed on: {loan.record.borrow_date.isoformat()} ({loan.days_borrowed} days ago)"
        for loan in loans
    ]
    _report("Overdue Alert", "\n\n".join(lines), style="yellow")


def show_documents(documents) -> None:
    if not documents:
        console.print("[yellow]No documents in library.[/]")
        return
    table = Table(title="📚 Catalog", show_lines=True, header_style="bold cyan")
    table.add_column("ID", style="magenta", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Author", style="white")
    table.add_column("Quantity", justify="right")
    table.add_column("Subject", style="green")
    for doc in documents:
        table.add_row(escape(doc.id), escape(doc.title), escape(doc.author), str(doc.quantity), escape(doc.subject))
    console.print(table)


def menu_add_document(lib: Library) -> None:
    doc_id = Prompt.ask("ID").strip()
    title = Prompt.ask("Title")
    author = Prompt.ask("Author")
    quantity = parse_quantity(Prompt.ask("Quantity"))
    subject = Prompt.ask("Subject", default="")
    lib.add_document(Document(doc_id, title, author, quantity, subject))
    _report("Success", "Document added successfully.")


def menu_remove_document(lib: Library) -> None:
    if not lib.documents:
        _error("Document list is empty, cannot remove.")
        return
    key = Prompt.ask("Enter Document ID or Title to remove")
    quantity = parse_quantity(Prompt.ask("Enter quantity to remove"), allow_zero=False)
    doc = lib.find_document(key)
    removed = lib.remove_document(key, quantity)
    _report("Success", f"Removed {removed} copies of {doc.title}")


def menu_update_document(lib: Library) -> None:
    doc_id = Prompt.ask("Enter Document ID")
    if lib.find_by_id(doc_id) is None:
        _error("Document not found in library.")
        return
    doc = lib.update_quantity(doc_id, parse_quantity(Prompt.ask("Enter new quantity")))
    _report("Success", f"Quantity updated successfully for {doc.title}")


def menu_find_document(lib: Library) -> None:
    doc = lib.find_document(Prompt.ask("Enter Document ID or Title to find"))
    if doc is None:
        _error("Document not found in library.")
    else:
        _report("Document Info", doc.get_info())


def menu_display_by_subject(lib: Library) -> None:
    subjects = lib.subjects()
    if not subjects:
        _error("No subjects available in library.")
        return
    subject = Prompt.ask("Select subject", choices=subjects)
    show_documents(lib.documents_by_subject(subject))


def menu_add_user(lib: Library) -> None:
    username = Prompt.ask("Enter User ID").strip()
    name = Prompt.ask("Enter User Name")
    user = lib.add_user(username, TextValidator.sanitize_field(name))
    _report("Success", f"User {user.name} added successfully with ID {user.username}")


def menu_borrow(lib: Library) -> None:
    user_id = Prompt.ask("Enter User ID to borrow")
    if lib.find_user(user_id) is None:
        _error("User not found. Please create user first.")
        return
    doc_id = Prompt.ask("Enter Document ID to borrow")
    quantity = parse_quantity(Prompt.ask("Enter quantity to borrow"), allow_zero=False)
    record = lib.borrow_document(user_id, doc_id, quantity)
    doc = lib.find_by_id(doc_id)
    _report("Success", f"{record.user_id} borrowed {quantity} copies of {doc.title}")


def menu_return(lib: Library) -> None:
    user_id = Prompt.ask("Enter User ID to return")
    doc_id = Prompt.ask("Enter Document ID to return")
    quantity = parse_quantity(Prompt.ask("Enter quantity to return"), allow_zero=False)
    lib.return_document(user_id, doc_id, quantity)
    doc = lib.find_by_id(doc_id)
    if Confirm.ask(f'Rate your experience with "{doc.title}"?', default=True):
        rating = validate_rating(Prompt.ask("Rating (1-5)", default="5"))
        comment = Prompt.ask("Comments (optional)", default="")
        entry = lib.rate_document(doc.title, user_id, rating, TextValidator.sanitize_field(comment))
        _report("Success", f'Thank you for rating "{entry.book_title}" with {entry.rating} stars!')
    _report("Success", f"{user_id} returned {quantity} copies of {doc.title}")


def menu_user_info(lib: Library) -> None:
    print_user_info(lib.list_users(), lib)


def menu_statistics(lib: Library) -> None:
    print_borrowing_statistics(lib.borrowing_statistics())


def menu_ratings(lib: Library) -> None:
    print_ratings(lib.ratings())


def menu_search(lib: Library) -> None:
    if not settings.enable_google_books:
        _error("Google Books search is disabled.")
        return
    query = Prompt.ask("Search Google Books for")
    results = []
    service = GoogleBooksService()
    with console.status(f'[bold green]Searching for "{escape(query)}" on Google Books...'):
        service.search_in_background(query, results.append).join()
    outcome = results[0] if results else GoogleBooksAPIError("search did not complete")
    if isinstance(outcome, BaseException):
        _error(f"Failed to fetch data from Google Books: {outcome}")
    else:
        _report("Google Books Result", outcome, style="cyan")


MENU_ACTIONS = [
    ("1", "Add document", "➕", menu_add_document),
    ("2", "Remove document", "🗑️", menu_remove_document),
    ("3", "Update quantity", "✏️", menu_update_document),
    ("4", "Find document", "🔎", menu_find_document),
    ("5", "Display by subject", "📚", menu_display_by_subject),
    ("6", "Add user", "👤", menu_add_user),
    ("7", "Borrow document", "📤", menu_borrow),
    ("8", "Return document", "📥", menu_return),
    ("9", "Display user info", "👥", menu_user_info),
    ("10", "Borrowing statistics", "📊", menu_statistics),
    ("11", "View book ratings", "⭐", menu_ratings),
    ("12", "Search Google Books", "🌐", menu_search),
]


def run_menu():
    """Simple interactive menu for the library desk."""
    lib = LibraryManager.get_instance()
    check_overdue_books(lib)

    def render_menu() -> None:
        table = Table.grid(padding=(0, 2))
        table.add_column(justify="right", style="bold cyan", width=4)
        table.add_column(justify="left", style="white")
        for key, label, icon, _ in MENU_ACTIONS:
            table.add_row(f"[reverse]{key}[/]", f"{icon} {label}")
        table.add_row("[reverse]0[/]", "🚪 Exit")
        console.print(Panel(table, title=APP_NAME, border_style="cyan", box=box.HEAVY, padding=(1, 2)))

    actions = {key: action for key, _, _, action in MENU_ACTIONS}
    while True:
        render_menu()
        choice = Prompt.ask("Choose an option", choices=["0", *actions], default="0").strip()
        if choice == "0":
            lib.save_all()
            console.print("[green]Goodbye![/]")
            break
        try:
            actions[choice](lib)
        except (LookupError, ValueError, GoogleBooksAPIError) as e:
            _error(str(e))
        print()


def run():
    if len(sys.argv) > 1:
        app()
    else:
        configure_logging()
        run_menu()


if __name__ == "__main__":
    run()
