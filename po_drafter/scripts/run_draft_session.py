# po_drafter/scripts/run_draft_session.py
from __future__ import annotations

import asyncio
import logging
from typing import Dict

from po_drafter.catalog.catalog_store import CatalogStore
from po_drafter.config import configure_logging
from po_drafter.conversation.conversation import Conversation
from po_drafter.conversation.router import UserMessage
from po_drafter.data_models import DraftSession
from po_drafter.drafting.commit_gate import find_missing_fields
from po_drafter.drafting.generation_service import DraftGenerationService
from po_drafter.drafting.merge_engine import ClarificationMergeEngine
from po_drafter.errors import IncompleteDraftError, PODraftError
from po_drafter.io.db_io import init_db
from po_drafter.llm_client.base import LLMRetryableError
from po_drafter.llm_client.provider_client import ProviderLLMClient
from po_drafter.orders.order_store import OrderStore


logger = logging.getLogger(__name__)

HELP = """Commands:
  <text>            new request (or "discard" / "start over" while a draft is open)
  :answer           answer the open questions one by one
  :commit           save the draft as a purchase order
  :show             print the current draft
  :quit             exit"""


def print_session(session: DraftSession) -> None:
    draft = session.draft
    print(f"\nSupplier: {draft.supplier_name or '?'}   (round {session.round})")
    for index, item in enumerate(draft.items):
        price = f"{item.unit_price:.2f}" if item.unit_price is not None else "?"
        total = f"{item.line_total:.2f}" if item.line_total is not None else "?"
        flags = f"  uncertain: {', '.join(sorted(item.uncertain_fields))}" if item.uncertain_fields else ""
        print(
            f"  [{index}] {item.sku or '?'} {item.product_name} x{item.quantity} {item.unit_type} "
            f"@ {price} {item.currency} = {total} (conf {item.confidence:.2f}){flags}"
        )
    for question in session.open_questions:
        print(f"  ? [{question.id}] {question.question}")
        for option in question.suggested_options:
            print(f"      - {option}")
    missing = find_missing_fields(draft)
    if missing:
        print("  Missing before commit: " + ", ".join(f"{m.field}@{m.item_index}" for m in missing))


def ask_answers(session: DraftSession) -> Dict[str, str]:
    answers: Dict[str, str] = {}
    for question in session.open_questions:
        raw = input(f"{question.question} (enter to skip) > ").strip()
        if raw:
            answers[question.id] = raw
    return answers


async def run() -> None:
    configure_logging()
    init_db()

    llm_client = ProviderLLMClient()
    conversation = Conversation(
        generator=DraftGenerationService(llm_client),
        merger=ClarificationMergeEngine(llm_client),
        catalog_store=CatalogStore(),
        order_store=OrderStore(),
    )
    print(HELP)

    while True:
        try:
            line = input("\npo> ").strip()
        except EOFError:
            break
        if not line:
            continue
        if line == ":quit":
            break
        if line == ":show":
            if conversation.session is not None:
                print_session(conversation.session)
            continue

        try:
            if line == ":commit":
                order = conversation.commit()
                print(f"Saved order {order.id}, total {order.total:.2f}")
                continue
            if line == ":answer":
                if conversation.session is None:
                    print("No draft yet.")
                    continue
                answers = ask_answers(conversation.session)
                if not answers:
                    continue
                message = UserMessage(answers=answers)
            else:
                message = UserMessage(text=line)

            session = await conversation.handle(message)
            if session is not None:
                print_session(session)
            else:
                print("Draft discarded.")

        except IncompleteDraftError as e:
            print(f"Cannot commit yet: {e.details.get('missing')}")
        except LLMRetryableError as e:
            print(f"The assistant is temporarily unavailable ({e.error_type}). Try again.")
        except PODraftError as e:
            print(f"{e.error_type}: {e.message}")


def main() -> int:
    asyncio.run(run())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
