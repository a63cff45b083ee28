import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress
from dataclasses import asdict
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

# --- Configuration & Initialization ---
load_dotenv()

from nanocontext import config as nano_config
from nanocontext.adapter.azure_openai_client import AzureOpenAIModelClient
from nanocontext.config import EngineConfig
from nanocontext.generation.coordinator import ContextCoordinator
from nanocontext.generation.debounce import ContextDebouncer
from nanocontext.generation.summarizer import ModelSummarizer
from nanocontext.models import ContextRecord, ModelRef
from nanocontext.observability.tracing import get_metrics, init_otel
from nanocontext.prompts.enhancer import (
    ActionOptions,
    generate_context_aware_action_prompt,
    is_context_suitable_for_prompts,
)
from nanocontext.storage.kv import FileKV
from nanocontext.storage.record_store import ContextRecordStore

logging.basicConfig(level=nano_config.LOG_LEVEL.upper())
logger = logging.getLogger("nanocontext.server")

CLEANUP_CHECK_INTERVAL_SECONDS = 60 * 60
# Cap the number of per-document debouncers to prevent unbounded growth.
MAX_DEBOUNCED_DOCUMENTS = 500

# --- Data Models ---


class ModelPayload(BaseModel):
    id: str
    name: str = ""
    provider: str = ""

    def to_ref(self) -> ModelRef:
        return ModelRef(id=self.id, name=self.name, provider=self.provider)


class CheckRequest(BaseModel):
    current_text: str
    previous_text: str = ""
    model: ModelPayload


class GenerateRequest(BaseModel):
    text: str
    model: ModelPayload
    timeout: Optional[float] = Field(None, gt=0)


class TextChangedRequest(BaseModel):
    document_id: str
    text: str
    model: ModelPayload


class LookupRequest(BaseModel):
    text: str
    reference_text: Optional[str] = None


class UpdateFieldsRequest(BaseModel):
    summary_text: Optional[str] = None
    tone: Optional[str] = None
    intent: Optional[str] = None


class ActionOptionsPayload(BaseModel):
    reword_type: Optional[str] = None
    tone: Optional[str] = None
    audience: Optional[str] = None
    custom_prompt: Optional[str] = None


class EnhanceRequest(BaseModel):
    action: str
    options: Optional[ActionOptionsPayload] = None
    fingerprint: Optional[str] = None
    text: Optional[str] = None


# --- Helper Functions ---


def _record_payload(record: Optional[ContextRecord]) -> Dict[str, Any]:
    return {"record": record.to_dict() if record is not None else None}


def _build_default_coordinator(model_client: AzureOpenAIModelClient) -> ContextCoordinator:
    engine_config = EngineConfig.from_env()
    kv = FileKV(nano_config.NANO_CONTEXT_STORE_PATH, max_bytes=nano_config.NANO_CONTEXT_STORE_MAX_BYTES)
    store = ContextRecordStore(kv, engine_config)
    return ContextCoordinator(store, ModelSummarizer(model_client), engine_config)


async def _cleanup_loop(coordinator: ContextCoordinator) -> None:
    """Periodically drop expired records once the cleanup interval has elapsed."""
    while True:
        try:
            removed = await coordinator.store.cleanup_if_due()
            if removed:
                logger.info("Periodic cleanup removed %d expired records", removed)
        except Exception:
            logger.exception("Periodic cleanup failed")
        await asyncio.sleep(CLEANUP_CHECK_INTERVAL_SECONDS)


def _debouncer_for(app: FastAPI, document_id: str) -> ContextDebouncer:
    debouncers: Dict[str, ContextDebouncer] = app.state.debouncers
    if document_id not in debouncers:
        if len(debouncers) >= MAX_DEBOUNCED_DOCUMENTS:
            oldest_id = next(iter(debouncers))
            debouncers.pop(oldest_id).cancel()
            logger.info("Evicted debouncer for document: %s", oldest_id)
        debouncers[document_id] = ContextDebouncer(app.state.coordinator)
    return debouncers[document_id]


# --- Application Factory ---


def create_app(coordinator: Optional[ContextCoordinator] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup/shutdown lifecycle."""
        print("Initializing context engine...")
        init_otel()
        model_client = None
        if app.state.coordinator is None:
            model_client = AzureOpenAIModelClient()
            if model_client.is_configured:
                print("  ✓ Azure OpenAI model client configured")
            else:
                print("  ⚠ Azure OpenAI credentials not configured; generation requests will fail")
            app.state.coordinator = _build_default_coordinator(model_client)
        engine_config = app.state.coordinator.config
        if engine_config.enabled:
            print(f"  ✓ Context engine enabled (auto_generate={engine_config.auto_generate})")
        else:
            print("  ⚠ Context engine disabled (NANO_CONTEXT_ENABLED=false)")
        cleanup_task = asyncio.ensure_future(_cleanup_loop(app.state.coordinator))
        app.state.cleanup_task = cleanup_task
        print("Server initialized and ready")
        yield
        cleanup_task.cancel()
        with suppress(asyncio.CancelledError):
            await cleanup_task
        for debouncer in app.state.debouncers.values():
            debouncer.cancel()
        if model_client is not None:
            await model_client.close()

    app = FastAPI(lifespan=lifespan)
    app.state.coordinator = coordinator
    app.state.debouncers = {}

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _coordinator(request: Request) -> ContextCoordinator:
        return request.app.state.coordinator

    # --- Health ---

    @app.get("/")
    async def read_root(request: Request):
        engine_config = _coordinator(request).config
        return {
            "Hello": "Nano Context",
            "Enabled": engine_config.enabled,
            "Auto Generate": engine_config.auto_generate,
        }

    # --- Endpoints: Context ---

    @app.post("/context/check")
    async def check_context(body: CheckRequest, request: Request):
        record = await _coordinator(request).check_and_update(
            body.current_text, body.previous_text, body.model.to_ref()
        )
        return _record_payload(record)

    @app.post("/context/generate")
    async def generate_context(body: GenerateRequest, request: Request):
        record = await _coordinator(request).generate_for_text(
            body.text, body.model.to_ref(), timeout=body.timeout
        )
        return _record_payload(record)

    @app.post("/context/text-changed")
    async def text_changed(body: TextChangedRequest, request: Request):
        debouncer = _debouncer_for(request.app, body.document_id)
        debouncer.text_changed(body.text, body.model.to_ref())
        return {"scheduled": True, "debounce_window": debouncer.window}

    @app.post("/context/lookup")
    async def lookup_context(body: LookupRequest, request: Request):
        record = await _coordinator(request).get_context_for_text(body.text, body.reference_text)
        return _record_payload(record)

    @app.get("/context/records/{fingerprint}")
    async def get_record(fingerprint: str, request: Request):
        record = await _coordinator(request).store.get(fingerprint)
        return _record_payload(record)

    @app.patch("/context/records/{fingerprint}")
    async def update_record(fingerprint: str, body: UpdateFieldsRequest, request: Request):
        fields = body.model_dump(exclude_none=True)
        record = await _coordinator(request).store.update_fields(fingerprint, **fields)
        return _record_payload(record)

    @app.delete("/context/records/{fingerprint}")
    async def delete_record(fingerprint: str, request: Request):
        removed = await _coordinator(request).store.remove(fingerprint)
        return {"removed": removed}

    @app.delete("/context/records")
    async def clear_records(request: Request):
        await _coordinator(request).store.clear()
        return {"cleared": True}

    @app.post("/context/cleanup")
    async def cleanup_records(request: Request):
        removed = await _coordinator(request).store.clear_expired()
        return {"removed": removed}

    @app.get("/context/stats")
    async def context_stats(request: Request):
        try:
            stats = await _coordinator(request).store.list_stats()
            return asdict(stats)
        except Exception:
            logger.exception("Failed to collect store stats")
            return {}

    # --- Endpoints: Prompts ---

    @app.post("/prompts/enhance")
    async def enhance_prompt(body: EnhanceRequest, request: Request):
        coordinator = _coordinator(request)
        record = None
        if body.fingerprint:
            record = await coordinator.store.get(body.fingerprint)
        elif body.text:
            record = await coordinator.get_context_for_text(body.text)

        options = ActionOptions(**body.options.model_dump()) if body.options else None
        prompt = generate_context_aware_action_prompt(body.action, options, record)
        return {"prompt": prompt, "context_applied": is_context_suitable_for_prompts(record)}

    # --- Endpoints: Diagnostics ---

    @app.get("/metrics")
    async def metrics():
        return get_metrics()

    @app.get("/diagnostics", response_class=PlainTextResponse)
    async def diagnostics(request: Request):
        return await _coordinator(request).generate_diagnostic_report()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
