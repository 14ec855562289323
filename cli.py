from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Replica Set Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("status", help="Desired state and last pass summary")
    sub.add_parser("containers", help="Observed containers with crash history")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_serve = sub.add_parser("serve", help="Run the reconciler with its status API")
    s_serve.add_argument("--host", default="127.0.0.1")
    s_serve.add_argument("--port", type=int, default=8000)

    args = p.parse_args(argv)

    if args.cmd == "serve":
        import uvicorn

        uvicorn.run("main:app", host=args.host, port=args.port)
        return 0

    base = args.api.rstrip("/")
    try:
        if args.cmd == "status":
            r = requests.get(f"{base}/status", timeout=10)
        elif args.cmd == "containers":
            r = requests.get(f"{base}/containers", timeout=10)
        elif args.cmd == "events":
            r = requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10)
        else:
            return 2
    except requests.exceptions.RequestException as e:
        print(f"Cannot reach {base}: {e}", file=sys.stderr)
        return 1

    _print(r.json())
    return 0 if r.ok else 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
