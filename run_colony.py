#!/usr/bin/env python3
"""
Run an emergent cognitive colony.

Usage:
    # With Claude (requires ANTHROPIC_API_KEY env var):
    python run_colony.py

    # With mock client (no API key needed), ten cycles:
    python run_colony.py --mock --cycles 10

    # With OpenRouter (requires OPENROUTER_API_KEY env var):
    python run_colony.py --openrouter --model x-ai/grok-beta

    # With Ollama (requires Ollama running locally):
    python run_colony.py --ollama --ollama-model llama2

    # From a JSON config, into a chosen data directory:
    python run_colony.py --config colony.json --data-dir runs/alpha

    # Start over instead of resuming an existing snapshot:
    python run_colony.py --mock --fresh
"""

import argparse
import json
import logging
import signal
import sys

from eca.core.colony import create_colony
from eca.core.config import ColonyConfig, ConfigurationError, config_summary, load_config
from eca.core.llm_clients import MockLLMClient
from eca.core.model_client import LLMModelClient
from eca.core.persistence import PersistenceError

logger = logging.getLogger("eca")


def create_client(args):
    """Create the appropriate LLM client based on CLI args."""
    if args.mock:
        print("[Using MockLLMClient - no API key needed]")
        return MockLLMClient()
    elif args.ollama:
        from eca.core.llm_clients import OllamaClient
        model = args.ollama_model or "llama2"
        url = args.ollama_url or "http://localhost:11434"
        print(f"[Using Ollama: {model} at {url}]")
        return OllamaClient(model=model, base_url=url, timeout=args.timeout or 120.0)
    elif args.openrouter:
        from eca.core.llm_clients import OpenRouterClient
        model = args.model or "x-ai/grok-beta"
        print(f"[Using OpenRouter: {model}]")
        return OpenRouterClient(model=model, timeout=args.timeout or 300.0)
    else:
        from eca.core.llm_clients import ClaudeClient
        model = args.model or "claude-sonnet-4-20250514"
        print(f"[Using Claude: {model}]")
        return ClaudeClient(model=model, timeout=args.timeout or 300.0)


def build_config(args) -> ColonyConfig:
    config = load_config(args.config) if args.config else ColonyConfig()
    if args.name:
        config.name = args.name
    if args.mission:
        config.mission = args.mission
    if args.data_dir:
        config.scheduler.data_dir = args.data_dir
    if args.grid:
        config.scheduler.grid_shape = tuple(int(n) for n in args.grid.split("x"))
    if args.seed is not None:
        config.scheduler.seed = args.seed
    if args.timeout:
        config.scheduler.call_timeout = args.timeout
    if args.knowledge_dir:
        config.scheduler.knowledge_dir = args.knowledge_dir
    return config


def main():
    parser = argparse.ArgumentParser(description="Run an emergent cognitive colony")
    parser.add_argument("--config", default=None, help="JSON config file")
    parser.add_argument("--name", default=None, help="Colony name")
    parser.add_argument("--mission", default=None, help="Colony mission statement")
    parser.add_argument("--data-dir", default=None, help="Snapshot and record directory")
    parser.add_argument("--grid", default=None, help="Grid shape, e.g. 5x5 or 4x4x4")
    parser.add_argument("--seed", type=int, default=None, help="Population seed")
    parser.add_argument("--cycles", type=int, default=None, help="Stop after N cycles")
    parser.add_argument("--timeout", type=float, default=None, help="Seconds per model call")
    parser.add_argument("--knowledge-dir", default=None, help="Directory of .txt/.md files shared with every cell")
    parser.add_argument("--fresh", action="store_true", help="Ignore an existing snapshot")
    parser.add_argument("--mock", action="store_true", help="Use mock LLM (no API key)")
    parser.add_argument("--model", default=None, help="Claude or OpenRouter model name")
    parser.add_argument("--openrouter", action="store_true", help="Use OpenRouter")
    parser.add_argument("--ollama", action="store_true", help="Use Ollama")
    parser.add_argument("--ollama-model", default=None, help="Ollama model name")
    parser.add_argument("--ollama-url", default=None, help="Ollama base URL")
    parser.add_argument("--embed", action="store_true", help="Attach thought embeddings")
    parser.add_argument("--show-config", action="store_true", help="Print config and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )

    try:
        config = build_config(args)
    except (ConfigurationError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        return 2

    if args.show_config:
        print(json.dumps(config.to_dict(), indent=2))
        return 0

    client = LLMModelClient(create_client(args), embed_thoughts=args.embed)
    try:
        colony = create_colony(config, client, resume=not args.fresh)
    except (ConfigurationError, PersistenceError) as e:
        logger.error(f"Cannot start colony: {e}")
        return 2

    def _signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        colony.request_stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    for key, value in config_summary(colony.config).items():
        logger.info(f"  {key}: {value}")

    print(f"\n{'=' * 60}")
    print(f"  Colony {colony.name} is online.")
    print(f"  Cycle: {colony.cycle} | Cells: {len(colony.cells)}")
    print(f"{'=' * 60}\n")

    try:
        completed = colony.run(max_cycles=args.cycles)
    except PersistenceError as e:
        logger.error(f"Halting: {e}")
        return 1

    print(colony.witness())
    logger.info(f"Completed {completed} cycle(s); colony at cycle {colony.cycle}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
