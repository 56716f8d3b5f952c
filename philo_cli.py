import argparse
import mimetypes
import sys
from pathlib import Path
from typing import List, Optional

import httpx


DEFAULT_API_BASE = "http://127.0.0.1:8000"


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path


def _error_text(resp: httpx.Response) -> str:
    try:
        return str(resp.json().get("error") or resp.text)
    except Exception:
        return resp.text


def run_ask(args: argparse.Namespace) -> int:
    base = args.base_url or DEFAULT_API_BASE
    payload = {"message": " ".join(args.question)}
    if args.thread:
        payload["threadId"] = args.thread
    with httpx.Client() as client:
        resp = client.post(_join_url(base, "/api/chat"), json=payload, timeout=args.timeout)
        if resp.status_code >= 400:
            print(f"Chat failed: HTTP {resp.status_code}: {_error_text(resp)}")
            return 1
        data = resp.json()
    print(data.get("response", ""))
    sources = data.get("sources") or []
    if sources:
        print("\nSources:")
        for name in sources:
            print(f"- {name}")
    print(f"\nthread: {data.get('threadId')}")
    if data.get("audioUrl"):
        print("audio: available")
    return 0


def run_transcribe(args: argparse.Namespace) -> int:
    base = args.base_url or DEFAULT_API_BASE
    path = Path(args.file)
    if not path.is_file():
        print(f"No such file: {path}")
        return 1
    mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    with httpx.Client() as client:
        resp = client.post(
            _join_url(base, "/api/transcribe"),
            files={"audio": (path.name, path.read_bytes(), mime)},
            timeout=args.timeout,
        )
        if resp.status_code >= 400:
            print(f"Transcription failed: HTTP {resp.status_code}: {_error_text(resp)}")
            return 1
        print(resp.json().get("text", ""))
    return 0


def run_providers(args: argparse.Namespace) -> int:
    base = args.base_url or DEFAULT_API_BASE
    with httpx.Client() as client:
        resp = client.get(_join_url(base, "/api/tts/providers"), timeout=10)
        if resp.status_code >= 400:
            print(f"Failed to fetch providers: HTTP {resp.status_code}")
            return 1
        data = resp.json()
    status = data.get("status") or {}
    for name in data.get("providers") or []:
        marker = "*" if name == data.get("default") else " "
        state = "configured" if status.get(name) else "missing credentials"
        print(f"{marker} {name} ({state})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Philo CLI")
    parser.add_argument("--base-url", default=DEFAULT_API_BASE, help="API base URL")
    subparsers = parser.add_subparsers(dest="command")

    ask = subparsers.add_parser("ask", help="Ask the research assistant a question")
    ask.add_argument("--thread", help="Continue an existing thread")
    ask.add_argument("--timeout", type=float, default=120, help="Max wait seconds")
    ask.add_argument("question", nargs="+", help="Question text")

    transcribe = subparsers.add_parser("transcribe", help="Transcribe an audio file")
    transcribe.add_argument("--timeout", type=float, default=60, help="Max wait seconds")
    transcribe.add_argument("file", help="Path to an audio recording")

    subparsers.add_parser("providers", help="List text-to-speech providers")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "ask":
        return run_ask(args)
    if args.command == "transcribe":
        return run_transcribe(args)
    if args.command == "providers":
        return run_providers(args)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
