"""Command-line inspection of the local store: bank summary, progress overview, queue flush."""
import argparse
import json
import logging

from theoryprep.config import SUPPORTED_LANGUAGES, load_settings
from theoryprep.service import TheoryService


def cmd_bank(service: TheoryService, args) -> None:
    topics = service.bank.get_topics(args.language)
    total = sum(len(topic.question_ids) for topic in topics)
    print(f"{len(topics)} topics, {total} questions ({args.language or service.language})")
    for topic in topics:
        print(f"  {topic.order:>3}  {topic.slug:<20} {len(topic.question_ids):>5}  {topic.title}")


def cmd_overview(service: TheoryService, args) -> None:
    overview = service.load_overview(args.user, args.language)
    print(json.dumps(overview, ensure_ascii=False, indent=2))


def cmd_flush(service: TheoryService, args) -> None:
    result = service.flush_pending(args.user, args.language)
    print(f"Synced {result.synced}, still pending {result.pending}")


def main(argv=None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    parser = argparse.ArgumentParser(prog="theoryprep", description="Inspect the local theory practice store.")
    parser.add_argument("--language", choices=SUPPORTED_LANGUAGES, default=None, help="Question bank language")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("bank", help="List topics of the question bank")
    overview = sub.add_parser("overview", help="Print a user's progress overview")
    overview.add_argument("--user", required=True)
    flush = sub.add_parser("flush", help="Push a user's queued session completions")
    flush.add_argument("--user", required=True)

    args = parser.parse_args(argv)
    service = TheoryService.from_settings(load_settings())
    handlers = {"bank": cmd_bank, "overview": cmd_overview, "flush": cmd_flush}
    handlers[args.command](service, args)


if __name__ == "__main__":
    main()
