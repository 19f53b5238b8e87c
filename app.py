# app.py: Study Buddy webhook
# - One POST per inbound chat message, one reply per turn
# - Blank identity or text is a 400; processing failures are a 200 with status "error"
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException

from clock import Clock, SystemClock
from db import ContentStore
from engines.base import FlowServices
from engines.session_orchestrator import InboundValidationError, SessionOrchestrator
from env_validation import validate_environment
from question_bank import QuestionBank
from schemas import WebhookBody, WebhookReply
from tutor import TextGenerator

logger = logging.getLogger(__name__)

STORE: Optional[ContentStore] = None
ORCHESTRATOR: Optional[SessionOrchestrator] = None


def configure(
    store: Optional[ContentStore] = None,
    *,
    clock: Optional[Clock] = None,
    generator: Optional[TextGenerator] = None,
    seed_path: Optional[str] = None,
) -> SessionOrchestrator:
    """Build the store and orchestrator the endpoints use."""
    global STORE, ORCHESTRATOR

    store = store or ContentStore()
    store.init()
    bank_path = seed_path or os.getenv("QUESTION_BANK_PATH")
    bank = QuestionBank(bank_path) if bank_path else QuestionBank()
    bank.sync(store, (clock or SystemClock()).now())
    if not store.count_questions():
        logger.warning("Question bank at %s is empty; flows will report no content", bank.path)

    services = FlowServices.build(store, generator=generator or TextGenerator())
    STORE = store
    ORCHESTRATOR = SessionOrchestrator(store, services=services, clock=clock)
    return ORCHESTRATOR


def get_orchestrator() -> SessionOrchestrator:
    if ORCHESTRATOR is None:
        return configure()
    return ORCHESTRATOR


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        validate_environment()
        if ORCHESTRATOR is None:
            configure()
        logger.info("Study Buddy ready (db=%s)", STORE.path if STORE else None)
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise
    finally:
        if STORE is not None:
            STORE.close()


app = FastAPI(title="Study Buddy", version="1.0.0", lifespan=_lifespan)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/webhook", response_model=WebhookReply)
def webhook(body: WebhookBody) -> WebhookReply:
    orchestrator = get_orchestrator()
    try:
        reply = orchestrator.handle_message(body.user_identity, body.message)
    except InboundValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return WebhookReply(status=reply.status, reply=reply.text)
