"""CLI interface for Phrase SRS.

Usage:
    python -m phrase_srs review                  Start a review session
    python -m phrase_srs due                     Show how many cards are due
    python -m phrase_srs stats                   Show your statistics
    python -m phrase_srs add "prompt" "answer"   Add a phrase and its card
    python -m phrase_srs import phrases.tsv      Import phrases from a TSV file
    python -m phrase_srs settings                Show or change review settings
"""

import argparse
import asyncio
import json
import logging
import time
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy import select

from backend.config import utcnow
from backend.database import async_session, init_db
from backend.models.member import Member
from backend.models.phrase import Phrase
from backend.srs.scheduler import format_interval
from backend.srs.session import (
    create_card,
    load_settings,
    member_stats,
    start_session,
    submit_rating,
    update_settings,
)
from backend.srs.state import Rating
from ingestion.phrase_import import import_phrases

RATING_KEYS = {"1": Rating.AGAIN, "2": Rating.HARD, "3": Rating.GOOD, "4": Rating.EASY}
DEFAULT_KEY = "3"


async def ensure_db() -> None:
    """Create tables if they don't exist."""
    await init_db()


async def ensure_member() -> int:
    """Ensure there's a default member and return the ID."""
    async with async_session() as db:
        stmt = select(Member).order_by(Member.id).limit(1)
        member = (await db.execute(stmt)).scalar_one_or_none()
        if member:
            return member.id

        member = Member(name="Learner", role="member")
        db.add(member)
        await db.commit()
        await db.refresh(member)
        return member.id


def read_rating() -> Rating | None:
    """Ask for a rating until a valid key is given; None means quit."""
    while True:
        rate_input = input(f"  Rate [1-4, enter={DEFAULT_KEY}]: ").strip().lower()
        if rate_input == "q":
            return None
        rating = RATING_KEYS.get(rate_input or DEFAULT_KEY)
        if rating is not None:
            return rating
        print(f"  '{rate_input}' is not a rating; use 1-4, or q to quit.")


async def cmd_review(args: argparse.Namespace) -> None:
    """Run an interactive review session."""
    await ensure_db()
    member_id = await ensure_member()

    async with async_session() as db:
        session = await start_session(db, member_id)
        items = session.cards[: args.max_cards]

        if not items:
            print("\nNo cards due for review. You're all caught up!")
            return

        queue = session.queue
        print("\n  Review Session")
        print(
            f"  {len(queue.learning_cards)} learning + {len(queue.due_cards)} due"
            f" + {len(queue.new_cards)} new = {len(items)} cards\n"
        )
        print("  Type 'q' to quit\n")

        reviewed = 0
        passed = 0

        for i, item in enumerate(items, 1):
            card = item.card
            phrase = await db.get(Phrase, card.phrase_id)
            if phrase is None:
                continue

            label = f"  [{i}/{len(items)}]"
            if card.state == "new":
                label += " (NEW)"
            print(label)
            print(f"  {phrase.prompt}")

            start_time = time.time()
            if input("\n  Press Enter to reveal: ").strip().lower() == "q":
                print("\n  Session ended early.")
                break
            response_ms = int((time.time() - start_time) * 1000)
            print(f"  {phrase.canonical_answer or '(no answer recorded)'}")

            buttons = "  ".join(
                f"{key}={rating.label.capitalize()} ({item.previews[rating].interval_label})"
                for key, rating in RATING_KEYS.items()
            )
            print(f"  {buttons}")
            rating = read_rating()
            if rating is None:
                print("\n  Session ended early.")
                break

            outcome = await submit_rating(db, card.id, rating, now=utcnow(), response_time_ms=response_ms)
            reviewed += 1
            if rating != Rating.AGAIN:
                passed += 1
            print(f"  Next review in {format_interval(outcome.card.interval_ms)}")
            if outcome.struggle_event is not None:
                print(f"  This one looks tough ({outcome.struggle_event.trigger}); extra help is on the way.")
            print()

    accuracy = passed / reviewed * 100 if reviewed else 0
    print("\n  Session Complete!")
    print(f"  Reviewed: {reviewed}  Recalled: {passed}  Accuracy: {accuracy:.0f}%\n")


async def cmd_due(args: argparse.Namespace) -> None:
    """Show how many cards are waiting."""
    await ensure_db()
    member_id = await ensure_member()

    async with async_session() as db:
        session = await start_session(db, member_id)

    queue = session.queue
    print(
        f"  {len(queue.learning_cards)} learning, {len(queue.due_cards)} due,"
        f" {len(queue.new_cards)} new cards available"
    )


async def cmd_stats(args: argparse.Namespace) -> None:
    """Show member statistics."""
    await ensure_db()
    member_id = await ensure_member()

    async with async_session() as db:
        stats = await member_stats(db, member_id)

    retention = f"{stats.retention_30d:.0%}" if stats.retention_30d is not None else "-"
    print("\n  Phrase SRS Statistics")
    print(f"  {'Total cards:':<20} {stats.total_cards}")
    print(f"  {'Due now:':<20} {stats.due_now}")
    print(f"  {'New (unseen):':<20} {stats.new}")
    print(f"  {'Learning:':<20} {stats.learning + stats.relearning}")
    print(f"  {'In review:':<20} {stats.review}")
    print(f"  {'Suspended/buried:':<20} {stats.suspended + stats.buried}")
    print(f"  {'Paused:':<20} {stats.paused}")
    print(f"  {'Total reviews:':<20} {stats.total_reviews}")
    print(f"  {'Retention (30d):':<20} {retention}")
    print(f"  {'Streak:':<20} {stats.streak_days} days")
    print()


async def cmd_add(args: argparse.Namespace) -> None:
    """Add a new phrase and a card for the default member."""
    await ensure_db()
    member_id = await ensure_member()

    async with async_session() as db:
        existing = (
            await db.execute(select(Phrase).where(Phrase.prompt == args.prompt))
        ).scalar_one_or_none()

        if existing:
            print(f"  '{args.prompt}' already exists (id={existing.id}).")
            return

        phrase = Phrase(
            mode=args.mode,
            prompt=args.prompt,
            canonical_answer=args.answer,
            answers=json.dumps([args.answer, *args.variant]),
            tags=json.dumps(args.tag) if args.tag else None,
        )
        db.add(phrase)
        await db.flush()

        await create_card(db, member_id, phrase.id, priority=args.priority)
        await db.commit()

        print(f"  Added (card ready for review): {args.prompt} -> {args.answer}")


async def cmd_import(args: argparse.Namespace) -> None:
    """Import phrases from a TSV file and create cards for the default member."""
    await ensure_db()
    member_id = await ensure_member()

    content = Path(args.path).read_text(encoding="utf-8")
    async with async_session() as db:
        result = await import_phrases(db, content, member_id=member_id, mode=args.mode)

    print(f"  Imported {result.phrases_created} new phrases, {result.cards_created} new cards.")
    if result.duplicates:
        print(f"  {result.duplicates} phrases already existed.")
    for row in result.invalid:
        print(f"  Skipped: {row.error}")


async def cmd_settings(args: argparse.Namespace) -> None:
    """Show, and optionally update, review settings."""
    await ensure_db()
    member_id = await ensure_member()

    changes = {
        "target_retention": args.retention,
        "new_per_day": args.new_per_day,
        "reviews_per_day": args.reviews_per_day,
        "learning_steps": args.learning_steps.split(",") if args.learning_steps else None,
        "relearning_steps": args.relearning_steps.split(",") if args.relearning_steps else None,
        "enable_fuzz": args.fuzz,
        "timezone": args.timezone,
    }
    changes = {key: value for key, value in changes.items() if value is not None}

    async with async_session() as db:
        if changes:
            try:
                settings = await update_settings(db, member_id, changes)
            except ValidationError as exc:
                for error in exc.errors(include_url=False):
                    field = ".".join(str(part) for part in error["loc"])
                    print(f"  {field}: {error['msg']}")
                return
        else:
            settings = await load_settings(db, member_id)

    print("\n  Review Settings")
    print(f"  {'Target retention:':<20} {settings.target_retention:.2f}")
    print(f"  {'New per day:':<20} {settings.new_per_day}")
    print(f"  {'Reviews per day:':<20} {settings.reviews_per_day}")
    print(f"  {'Learning steps:':<20} {', '.join(settings.learning_steps) or '-'}")
    print(f"  {'Relearning steps:':<20} {', '.join(settings.relearning_steps) or '-'}")
    print(f"  {'Fuzz:':<20} {'on' if settings.enable_fuzz else 'off'}")
    print(f"  {'Timezone:':<20} {settings.timezone}")
    print()


def main() -> None:
    """Entry point for the Phrase SRS CLI application."""
    parser = argparse.ArgumentParser(
        prog="phrase_srs",
        description="Spaced repetition for language phrases",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # review
    review_parser = subparsers.add_parser("review", help="Start a review session")
    review_parser.add_argument("--max-cards", type=int, default=50, help="Max cards this sitting")

    # due
    subparsers.add_parser("due", help="Show cards due for review")

    # stats
    subparsers.add_parser("stats", help="Show your statistics")

    # add
    add_parser = subparsers.add_parser("add", help="Add a new phrase")
    add_parser.add_argument("prompt", help="Prompt shown on the card")
    add_parser.add_argument("answer", help="Canonical answer")
    add_parser.add_argument("--variant", action="append", default=[], help="Other accepted answer")
    add_parser.add_argument("--tag", action="append", default=[], help="Tag (repeatable)")
    add_parser.add_argument("--mode", choices=["recall", "recognition"], default="recall")
    add_parser.add_argument("--priority", type=int, default=0, help="Higher is introduced sooner")

    # import
    import_parser = subparsers.add_parser("import", help="Import phrases from a TSV file")
    import_parser.add_argument("path", help="prompt, answer, alternates, tags, difficulty per line")
    import_parser.add_argument("--mode", choices=["recall", "recognition"], default="recall")

    # settings
    settings_parser = subparsers.add_parser("settings", help="Show or change review settings")
    settings_parser.add_argument("--retention", type=float, help="Target retention (0.75-0.95)")
    settings_parser.add_argument("--new-per-day", type=int, help="New cards per day (0-50)")
    settings_parser.add_argument("--reviews-per-day", type=int, help="Reviews per day (0-200)")
    settings_parser.add_argument("--learning-steps", help='Comma-separated, e.g. "1m,10m"')
    settings_parser.add_argument("--relearning-steps", help='Comma-separated, e.g. "10m"')
    settings_parser.add_argument("--fuzz", action=argparse.BooleanOptionalAction, default=None)
    settings_parser.add_argument("--timezone", help="IANA timezone for daily limits")

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    if not args.command:
        parser.print_help()
        return

    cmd_map = {
        "review": cmd_review,
        "due": cmd_due,
        "stats": cmd_stats,
        "add": cmd_add,
        "import": cmd_import,
        "settings": cmd_settings,
    }

    asyncio.run(cmd_map[args.command](args))


if __name__ == "__main__":
    main()
