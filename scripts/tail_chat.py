import argparse
import asyncio
import json
import os
import sys

# Ensure project root and src/ on path when executed directly
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
for _p in (ROOT, os.path.join(ROOT, "src")):
    if _p not in sys.path:
        sys.path.insert(0, _p)

from flowdesk.client import FlowdeskClient  # noqa: E402

# Usage:
#   python scripts/tail_chat.py tail <chat_id>
#   python scripts/tail_chat.py abort <chat_id>
#   python scripts/tail_chat.py messages <chat_id>
#   python scripts/tail_chat.py ask <project_id> "question text"


def _print_chunk(chunk: dict, raw: bool) -> None:
    if raw:
        print(json.dumps(chunk, ensure_ascii=False))
        return
    kind = chunk.get("type")
    if kind in ("text-delta", "reasoning-delta"):
        sys.stdout.write(chunk.get("delta", ""))
        sys.stdout.flush()
    elif kind == "abort":
        print("\n[aborted]")
    elif kind == "error":
        print(f"\n[error] {chunk.get('errorText')}")
    elif kind == "finish":
        print(f"\n[finish] {chunk.get('finishReason')} {chunk.get('usage')}")


async def _run(args) -> int:
    async with FlowdeskClient(args.base_url) as client:
        if args.cmd == "tail":
            seen = False
            async for chunk in client.resume(args.chat_id):
                seen = True
                _print_chunk(chunk, args.raw)
            if not seen:
                print("no active stream")
        elif args.cmd == "abort":
            print("signalled" if await client.abort(args.chat_id) else "idle")
        elif args.cmd == "messages":
            for msg in await client.messages(args.chat_id):
                print(json.dumps(msg, ensure_ascii=False))
        elif args.cmd == "ask":
            payload = {
                "type": "project",
                "projectId": args.project_id,
                "messages": [
                    {
                        "role": "user",
                        "parts": [{"type": "text", "text": args.text}],
                    }
                ],
            }
            async for chunk in client.send(payload):
                _print_chunk(chunk, args.raw)
            print(f"chat: {client.last_chat_id}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="flowdesk stream tool")
    parser.add_argument("--base-url", default="http://127.0.0.1:8000")
    parser.add_argument("--raw", action="store_true", help="print JSON chunks")
    sub = parser.add_subparsers(dest="cmd", required=True)
    for name in ("tail", "abort", "messages"):
        p = sub.add_parser(name)
        p.add_argument("chat_id")
    ask = sub.add_parser("ask")
    ask.add_argument("project_id")
    ask.add_argument("text")
    args = parser.parse_args()
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
