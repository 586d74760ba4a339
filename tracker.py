#!/usr/bin/env python3
"""BookTrack CLI - personal book list against the BookTrack API."""
import argparse
import asyncio
import getpass
import json
import sys
from dataclasses import asdict
from tabulate import tabulate
from booktrack.client import BookTrackClient
from booktrack.collection import BookCollection
from booktrack.config import Config
from booktrack.errors import BookTrackError, StorageError
from booktrack.storage import SessionStore, create_storage
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def truncate(text: str, width: int) -> str:
    return text[:width] + "..." if len(text) > width else text


def display_books(books, format_type: str):
    """Display books in specified format."""
    if format_type == "table":
        headers = ["ID", "Title", "Author", "Genre", "Pages", "Updated"]
        rows = [
            [
                book.id,
                truncate(book.title, 50),
                truncate(book.author, 30),
                truncate(book.genre, 20),
                book.page_count or "N/A",
                book.updated_at
            ]
            for book in books
        ]
        print("\n" + tabulate(rows, headers=headers, tablefmt="grid"))

    elif format_type == "json":
        print(json.dumps([asdict(book) for book in books], indent=2))

    elif format_type == "compact":
        for i, book in enumerate(books, 1):
            print(f"{i}. {book.title} - {book.author} ({book.pages_str})")


def book_fields(args) -> dict:
    """Collect book fields given on the command line."""
    fields = {
        "title": args.title,
        "author": args.author,
        "genre": args.genre,
        "description": args.description,
        "page_count": args.pages,
    }
    return {name: value for name, value in fields.items() if value is not None}


async def run_books(args, client: BookTrackClient, storage):
    """Handle the books subcommands."""
    collection = BookCollection(client, storage=storage)
    try:
        if args.books_command == "list":
            books = await collection.load_all(
                genre=args.genre, author=args.author, page=args.page, limit=args.limit
            )
            display_books(books, args.format)

        elif args.books_command == "show":
            book = await collection.fetch_and_select(args.id)
            display_books([book], args.format)

        elif args.books_command == "add":
            book = await collection.create(book_fields(args))
            print(f"✅ Added '{book.title}' ({book.id})")

        elif args.books_command == "update":
            book = await collection.update(args.id, book_fields(args))
            print(f"✅ Updated '{book.title}' ({book.id})")

        elif args.books_command == "delete":
            await collection.delete(args.id)
            print(f"✅ Deleted {args.id}")
    finally:
        collection.close()


async def run(args, config: Config):
    """Dispatch a parsed command against a configured client."""
    storage = create_storage(config)
    session_store = SessionStore(storage)

    try:
        async with BookTrackClient(
            session_store,
            base_url=config.API_URL,
            timeout=config.DEFAULT_TIMEOUT
        ) as client:

            if args.command == "login":
                password = args.password if args.password is not None else getpass.getpass("Password: ")
                await client.login(args.username, password)
                print(f"✅ Logged in as {args.username}")

            elif args.command == "register":
                password = args.password if args.password is not None else getpass.getpass("Password: ")
                message = await client.register(args.username, password, args.email)
                print(f"✅ {message}. Please login.")

            elif args.command == "logout":
                await client.logout()
                print("✅ Logged out")

            elif args.command == "profile":
                if args.username or args.email:
                    current = await client.fetch_profile()
                    profile = await client.update_profile(
                        args.username or current.username,
                        args.email or current.email
                    )
                else:
                    profile = await client.fetch_profile()
                print(tabulate([[profile.username, profile.email]], headers=["Username", "Email"], tablefmt="grid"))

            elif args.command == "books":
                await run_books(args, client, storage)

    finally:
        if hasattr(storage, "close"):
            storage.close()


def add_book_arguments(parser, required: bool):
    parser.add_argument("--title", required=required, help="Book title")
    parser.add_argument("--author", required=required, help="Author")
    parser.add_argument("--genre", required=required, help="Genre")
    parser.add_argument("--description", default=None, help="Description")
    parser.add_argument("--pages", default=None, help="Total pages")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="BookTrack - personal book tracking CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s login alice
  %(prog)s books list --genre fantasy --format compact
  %(prog)s books add --title Dune --author Herbert --genre sci-fi --pages 412
  %(prog)s books update 64f0c2 --pages 420
  %(prog)s logout
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Auth commands
    login_parser = subparsers.add_parser("login", help="Log in")
    login_parser.add_argument("username", help="Username")
    login_parser.add_argument("--password", help="Password (prompted if omitted)")

    register_parser = subparsers.add_parser("register", help="Create an account")
    register_parser.add_argument("username", help="Username")
    register_parser.add_argument("email", help="Email address")
    register_parser.add_argument("--password", help="Password (prompted if omitted)")

    subparsers.add_parser("logout", help="Log out and clear local data")

    # Profile command
    profile_parser = subparsers.add_parser("profile", help="Show or update profile")
    profile_parser.add_argument("--username", help="New username")
    profile_parser.add_argument("--email", help="New email")

    # Books commands
    books_parser = subparsers.add_parser("books", help="Manage books")
    books_sub = books_parser.add_subparsers(dest="books_command", help="Books command")

    list_parser = books_sub.add_parser("list", help="List books")
    list_parser.add_argument("--genre", help="Filter by genre")
    list_parser.add_argument("--author", help="Filter by author")
    list_parser.add_argument("--page", type=int, help="Page number")
    list_parser.add_argument("--limit", type=int, help="Page size")
    list_parser.add_argument("--format", choices=["table", "json", "compact"], default="table", help="Output format")

    show_parser = books_sub.add_parser("show", help="Show one book")
    show_parser.add_argument("id", help="Book ID")
    show_parser.add_argument("--format", choices=["table", "json", "compact"], default="table", help="Output format")

    add_parser = books_sub.add_parser("add", help="Add a book")
    add_book_arguments(add_parser, required=True)

    update_parser = books_sub.add_parser("update", help="Update a book")
    update_parser.add_argument("id", help="Book ID")
    add_book_arguments(update_parser, required=False)

    delete_parser = books_sub.add_parser("delete", help="Delete a book")
    delete_parser.add_argument("id", help="Book ID")

    args = parser.parse_args()

    if not args.command or (args.command == "books" and not args.books_command):
        parser.print_help()
        sys.exit(1)

    config = Config()

    try:
        asyncio.run(run(args, config))

    except BookTrackError as e:
        logger.error(f"❌ {e.kind}: {e.message}")
        for field, message in e.fields.items():
            logger.error(f"   {field}: {message}")
        sys.exit(1)
    except StorageError as e:
        logger.error(f"❌ Local storage error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("\n⚠️  Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
