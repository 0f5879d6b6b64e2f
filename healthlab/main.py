"""Command-line entry point: run the proxy server or drive the providers directly."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import sys
from typing import List, Optional

import uvicorn

from healthlab.core import secrets
from healthlab.core.errors import HealthLabError
from healthlab.core.gemini_client import GeminiClient
from healthlab.core.image_codec import encode_image
from healthlab.core.logging_utils import configure_logging
from healthlab.core.meshy_client import MeshyClient
from healthlab.core.models import (
    SOURCE_IMAGE,
    SOURCE_TEXT,
    STATUS_SUCCEEDED,
    GenerationRequest,
    GenerationTask,
)
from healthlab.core.settings import Settings
from healthlab.core.task_runner import TaskSlot
from healthlab.web.api import create_app


def _print_update(task: GenerationTask) -> None:
    progress = f" {task.progress:.0f}%" if task.progress is not None else ""
    print(f"[{task.task_id}] {task.status}{progress}")


async def run_generation(settings: Settings, args: argparse.Namespace) -> GenerationTask:
    request = GenerationRequest(prompt=args.prompt, style=args.style, mode=args.mode, topology=args.topology)
    kind = SOURCE_TEXT
    if args.image:
        image = encode_image(args.image)
        request.image_data = image.data
        request.image_mime_type = image.mime_type
        kind = SOURCE_IMAGE

    async with MeshyClient(settings.meshy, timeout=settings.http_timeout_s) as client:
        slot = TaskSlot(
            client,
            interval_s=settings.meshy.poll_interval_s,
            max_attempts=settings.meshy.max_poll_attempts,
            on_update=_print_update,
        )
        await slot.submit(kind, request)
        try:
            return await slot.wait()
        finally:
            slot.cancel()


async def run_analysis(settings: Settings, args: argparse.Namespace) -> dict:
    image = encode_image(args.image)
    async with GeminiClient(settings.gemini, timeout=settings.http_timeout_s) as client:
        result, _ = await client.analyze(image, args.notes)
    return result.to_dict()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="healthlab", description=__doc__)
    parser.add_argument("--log-level", default=None, help="Override HEALTHLAB_LOG_LEVEL.")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP proxy server.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    generate = commands.add_parser("generate", help="Create a 3D model and wait for it.")
    generate.add_argument("prompt", nargs="?", default=None)
    generate.add_argument("--image", help="PNG, JPEG or WebP reference image.")
    generate.add_argument("--style")
    generate.add_argument("--mode")
    generate.add_argument("--topology")

    analyze = commands.add_parser("analyze", help="Ask for food and exercise advice on a photo.")
    analyze.add_argument("image")
    analyze.add_argument("--notes", default="")

    login = commands.add_parser("login", help="Store a provider API key in the system keyring.")
    login.add_argument("provider", choices=secrets.PROVIDERS)

    logout = commands.add_parser("logout", help="Remove a stored provider API key.")
    logout.add_argument("provider", choices=secrets.PROVIDERS)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "login":
        api_key = getpass.getpass(f"{args.provider} API key: ").strip()
        if not api_key:
            print("No key entered.", file=sys.stderr)
            return 1
        secrets.save_key(args.provider, api_key)
        print(f"Saved {args.provider} API key.")
        return 0
    if args.command == "logout":
        removed = secrets.delete_key(args.provider)
        print(f"Removed {args.provider} API key." if removed else f"No {args.provider} API key stored.")
        return 0

    try:
        settings = Settings.from_env()
    except HealthLabError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    configure_logging(args.log_level or settings.log_level)

    if args.command == "serve":
        uvicorn.run(create_app(settings), host=args.host, port=args.port, log_config=None)
        return 0

    try:
        if args.command == "generate":
            task = asyncio.run(run_generation(settings, args))
            print(json.dumps({"status": task.status, "meshUrl": task.mesh_url, "previewUrl": task.preview_url}))
            return 0 if task.status.upper() == STATUS_SUCCEEDED else 1
        analysis = asyncio.run(run_analysis(settings, args))
        print(json.dumps(analysis, ensure_ascii=False, indent=2))
        return 0
    except (HealthLabError, ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
