"""
streamcore — command-line entrypoint.
Streams one completion to stdout through any configured provider.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Sequence

from dotenv import load_dotenv

from streamcore.agent.provider import StreamingProvider
from streamcore.agent.retry import stream_with_retry
from streamcore.cancellation import CancellationToken
from streamcore.config import get_settings, load_config
from streamcore.errors import ConfigurationError, StreamCoreError
from streamcore.logging_config import setup_logging
from streamcore.models.base import Message, StreamConfig
from streamcore.models.registry import get_adapter

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Stream a completion from a configured LLM provider")
    parser.add_argument("prompt", help="User message; '-' reads it from stdin")
    parser.add_argument("-p", "--provider", help="Provider name (defaults to default_provider in config)")
    parser.add_argument("-m", "--model", help="Override the configured model")
    parser.add_argument("-s", "--system", help="System prompt sent as the first message")
    parser.add_argument("-t", "--timeout", type=float, help="Cancel the stream after this many seconds")
    parser.add_argument("--chunk-timeout", type=float, help="Cancel when no chunk arrives for this many seconds")
    parser.add_argument("--retries", type=int, help="Retries for failures before any output (default from config)")
    parser.add_argument("--temperature", type=float, help="Sampling temperature")
    parser.add_argument("--max-tokens", type=int, help="Maximum tokens to generate")
    parser.add_argument("-c", "--config", help="Path to streamcore.json")
    parser.add_argument(
        "--reasoning-style",
        choices=["callout", "think_tags"],
        help="How reasoning is marked in the output",
    )
    parser.add_argument("--log-level", help="Logging level (default from config)")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines on stderr")
    return parser


def _build_messages(args: argparse.Namespace) -> list[Message]:
    prompt = sys.stdin.read() if args.prompt == "-" else args.prompt
    messages = []
    if args.system:
        messages.append(Message(role="system", content=args.system))
    messages.append(Message(role="user", content=prompt))
    return messages


async def _run(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    if args.reasoning_style:
        cfg.reasoning.style = args.reasoning_style
    settings = get_settings()
    setup_logging(
        level=args.log_level or settings.log_level or cfg.logging.level,
        use_json=args.json_logs or cfg.logging.json_output,
    )

    retry = cfg.retry
    if args.retries is not None:
        retry = retry.model_copy(update={"max_retries": args.retries})
    timeouts = cfg.timeouts
    if args.timeout:
        timeouts = timeouts.model_copy(update={"request_timeout": args.timeout})
    if args.chunk_timeout:
        timeouts = timeouts.model_copy(update={"chunk_timeout": args.chunk_timeout})

    adapter = get_adapter(args.provider, cfg)
    provider = StreamingProvider(adapter)

    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
    except NotImplementedError:
        # Windows: Ctrl-C arrives as KeyboardInterrupt instead
        pass

    config = StreamConfig(
        model=args.model,
        temperature=args.temperature,
        max_tokens=args.max_tokens,
        cancellation=token,
    )
    try:
        async for chunk in stream_with_retry(provider, _build_messages(args), config, retry, timeouts):
            sys.stdout.write(chunk)
            sys.stdout.flush()
        sys.stdout.write("\n")
    finally:
        await adapter.aclose()

    if token.cancelled:
        print(f"[{token.reason}]", file=sys.stderr)
        return 130 if token.reason == "interrupted" else 124
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except StreamCoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


def start():
    raise SystemExit(main())


if __name__ == "__main__":
    start()
