"""Local demo agent for command backend integration tests."""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Echo the last conversation message as the task result."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--state-file", required=True)
    parser.add_argument("--delay", type=float, default=0.0)
    parser.add_argument("--fail", action="store_true")
    args = parser.parse_args(argv)

    state = json.loads(Path(args.state_file).read_text("utf-8"))
    if args.delay > 0:
        time.sleep(args.delay)
    if args.fail:
        print("echo_agent: failure requested", file=sys.stderr)
        return 2

    messages = state.get("messages") or []
    last = messages[-1]["content"] if messages else ""
    payload = {
        "response": last,
        "llm_id": state.get("llm_id", ""),
        "thread_id": state.get("thread_id", ""),
        "message_count": len(messages),
        "backend": "echo_agent",
    }
    print(json.dumps(payload, ensure_ascii=False))
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
