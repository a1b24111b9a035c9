import json
import os
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIBDESK_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_documents(documents: List[Any], empty_message: str = "No documents in library.") -> None:
    """Print documents in the current output mode.
    - plain: 'ID - Title by Author (N copies) [Subject]' lines
    - json: array of document dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not documents:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps([d.to_dict() for d in documents], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Documents", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Quantity", justify="right")
        table.add_column("Subject", style="green")
        for d in documents:
            table.add_row(d.id, d.title, d.author, str(d.quantity), d.subject)
        _console.print(table)
    else:
        for d in documents:
            subject = f" [{d.subject}]" if d.subject else ""
            print(f"{d.id} - {d.title} by {d.author} ({d.quantity} copies){subject}")


def print_user_info(users: List[Any], library: Any) -> None:
    """Users with the titles they currently hold."""
    if not users:
        print("No users available.")
        return

    if get_output_mode() == "json":
        print(json.dumps([u.to_dict() for u in users], ensure_ascii=False))
        return

    for user in users:
        borrowed = user.borrowed_documents
        print(f"User ID: {user.username}, Name: {user.name}, Borrowed Books: {len(borrowed)}")
        for doc_id, quantity in sorted(borrowed.items()):
            doc = library.find_by_id(doc_id)
            if doc is not None:
                print(f"- {doc.title} ({quantity} copies)")
        print()


def print_borrowing_statistics(summaries: List[Any]) -> None:
    if not summaries:
        print("No users available.")
        return

    if get_output_mode() == "json":
        payload = [
            {
                "username": s.username,
                "name": s.name,
                "total_borrowed": s.total_borrowed,
                "loans": [{"title": l.title, "quantity": l.quantity, "status": l.status} for l in s.loans],
            }
            for s in summaries
        ]
        print(json.dumps(payload, ensure_ascii=False))
        return

    print("Borrowing Statistics:")
    print()
    for s in summaries:
        print(f"User: {s.username} ({s.name})")
        print(f"Total Books Borrowed: {s.total_borrowed}")
        print("Details:")
        for loan in s.loans:
            print(f"- {loan.title} ({loan.quantity} copies) - {loan.status}")
        print()


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print library totals in the current output mode."""
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = {
        "total_documents": "Total Documents",
        "copies_in_stock": "Copies In Stock",
        "total_users": "Total Users",
        "copies_on_loan": "Copies On Loan",
        "overdue_loans": "Overdue Loans",
        "total_ratings": "Total Ratings",
    }

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels.items():
            print(f"{label}: {stats.get(key, 0)}")


def print_ratings(ratings: List[Any], average: Optional[float] = None) -> None:
    if not ratings:
        print("No book ratings available.")
        return

    if get_output_mode() == "json":
        print(json.dumps([r.to_dict() for r in ratings], ensure_ascii=False))
        return

    print("Book Ratings:")
    print()
    for r in ratings:
        print(str(r))
    if average is not None:
        print(f"Average Rating: {average:.1f} stars")


def print_overdue(loans: List[Any]) -> None:
    if not loans:
        print("No overdue books.")
        return

    if get_output_mode() == "json":
        payload = [dict(loan.record.to_dict(), days_borrowed=loan.days_borrowed) for loan in loans]
        print(json.dumps(payload, ensure_ascii=False))
        return

    print("Overdue Books:")
    print()
    for loan in loans:
        print(f"User: {loan.user.name} (ID: {loan.user.username})")
        print(f"Book: {loan.document.title} ({loan.record.quantity} copies)")
        print(f"Borrowed on: {loan.record.borrow_date.isoformat()} ({loan.days_borrowed} days ago)")
        print()
