import argparse
import asyncio
import json
import os
import sys
import uuid

from dotenv import load_dotenv

from chatdesk.conversations.schemas import InboundMessage
from chatdesk.runtime import create_runtime


def _echo(message: str) -> None:
    sys.stdout.write(f"{message}\n")


async def _simulate(args: argparse.Namespace) -> None:
    runtime = create_runtime()
    await runtime.start()
    try:
        for text in args.message:
            inbound = InboundMessage.model_validate(
                {
                    "channel": args.channel,
                    "conversationId": args.conversation_id,
                    "visitorId": args.visitor_id,
                    "tenantId": args.tenant_id,
                    "message": {"text": text},
                }
            )
            result = await runtime.orchestrator.handle_message(inbound)
            _echo("=" * 80)
            _echo(f"Visitor: {text}")
            _echo(f"Agent:   {result.reply}")
            _echo(
                f"state={result.state.value if result.state else '-'} "
                f"intent={result.intent} escalated={result.escalated}"
            )
            for outcome in result.tool_results:
                _echo(f"  tool {outcome.tool}: {json.dumps(outcome.result.to_dict())}")
        await runtime.events.drain()
    finally:
        await runtime.stop()

    ticket = await runtime.ticketing.get_ticket_by_conversation_id(args.conversation_id)
    if ticket is not None:
        _echo("-" * 80)
        _echo(f"Ticket {ticket.id} [{ticket.status}] tags={ticket.tags}")


def main():
    load_dotenv()
    parser = argparse.ArgumentParser(
        description="Send messages through the orchestration pipeline without a channel"
    )
    parser.add_argument(
        "--message", "-m", action="append", required=True, help="Visitor message (repeatable)"
    )
    parser.add_argument(
        "--channel", default="web", choices=["web", "whatsapp", "business_chat"]
    )
    parser.add_argument("--conversation-id", default=f"sim-{uuid.uuid4().hex[:8]}")
    parser.add_argument("--visitor-id", default="visitor-sim")
    parser.add_argument("--tenant-id", default=os.getenv("TENANT_ID", "default"))
    args = parser.parse_args()

    asyncio.run(_simulate(args))


if __name__ == "__main__":
    main()
