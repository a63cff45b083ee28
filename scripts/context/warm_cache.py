#!/usr/bin/env python3
"""Pre-generate context records for a batch of documents.

Usage:
    python warm_cache.py [--dry-run]

Reads documents from stdin (one JSON object per line, ``{"text": ..., "model": ...}``)
and runs each through the generation path (reject → cache lookup → summarize → store).
``model`` defaults to ``AZURE_OPENAI_DEPLOYMENT``.
"""

from __future__ import annotations

import asyncio
import json
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "server", "nanocontext_server"))

from dotenv import load_dotenv

load_dotenv()

from nanocontext import config as cfg
from nanocontext.adapter.azure_openai_client import AzureOpenAIModelClient
from nanocontext.config import EngineConfig
from nanocontext.generation.coordinator import ContextCoordinator
from nanocontext.generation.summarizer import ModelSummarizer
from nanocontext.models import ModelRef
from nanocontext.storage.kv import FileKV
from nanocontext.storage.record_store import ContextRecordStore


async def warm_cache(dry_run: bool = False) -> None:
    print("Reading documents from stdin (one JSON per line)...")
    engine_config = EngineConfig.from_env()
    store = ContextRecordStore(
        FileKV(cfg.NANO_CONTEXT_STORE_PATH, max_bytes=cfg.NANO_CONTEXT_STORE_MAX_BYTES),
        engine_config,
    )
    client = AzureOpenAIModelClient()
    coordinator = ContextCoordinator(store, ModelSummarizer(client), engine_config)

    generated = 0
    cached = 0
    skipped = 0
    errors = 0

    try:
        for line in sys.stdin:
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
                text = data.get("text", "")
                model = ModelRef(id=data.get("model") or cfg.AZURE_OPENAI_DEPLOYMENT)
                key = coordinator.fingerprint(text)
                if dry_run:
                    print(f"  [dry-run] Would generate context for {key or 'empty text'} ({len(text)} chars)")
                    continue
                if key and await store.get(key) is not None:
                    cached += 1
                    continue
                record = await coordinator.generate_for_text(text, model)
                if record is None:
                    skipped += 1
                else:
                    generated += 1
            except Exception as e:
                print(f"  Error: {e}")
                errors += 1
    finally:
        await client.close()

    print(f"\nWarm-up complete: generated={generated} cached={cached} skipped={skipped} errors={errors}")


if __name__ == "__main__":
    dr = "--dry-run" in sys.argv
    asyncio.run(warm_cache(dry_run=dr))
