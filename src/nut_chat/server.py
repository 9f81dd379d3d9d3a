"""FastAPI application exposing the decision, telemetry and timeline routes."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import load_config
from .decision import build_classifier_prompt, parse_analyze_verdict
from .llm import ClassifierError, create_from_config
from .messages import Message, to_wire
from .session import ConversationSession, SessionRegistry
from .timeline import StaleTimelineError, TypeMismatch

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request/response
# -----------------------------
class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class UseSimulationRequest(_CamelModel):
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    message_input: str = Field(..., alias="messageInput")


class UseSimulationResponse(_CamelModel):
    use_simulation: bool = Field(..., alias="useSimulation")


class PingTelemetryRequest(BaseModel):
    event: str = Field(..., min_length=1)
    data: Any = None


class AddMessageRequest(_CamelModel):
    message: Message
    expected_version: Optional[int] = Field(default=None, alias="expectedVersion")


class RejectChangeRequest(_CamelModel):
    message_id: str = Field(..., alias="messageId")
    explanation: str = ""
    share_project: bool = Field(default=False, alias="shareProject")
    retry: bool = False


class ApproveChangeRequest(_CamelModel):
    message_id: str = Field(..., alias="messageId")


# -----------------------------
# Utilities
# -----------------------------
def _timeline_payload(session: ConversationSession) -> Dict[str, Any]:
    messages, version = session.timeline.snapshot()
    return {"messages": [to_wire(m) for m in messages], "version": version}


def _redact(cfg: Dict[str, Any]) -> Dict[str, Any]:
    redacted = {k: (dict(v) if isinstance(v, dict) else v) for k, v in cfg.items()}
    classifier = redacted.get("classifier")
    if isinstance(classifier, dict) and classifier.get("api_key"):
        classifier["api_key"] = "***"
    return redacted


def _post_json(
    url: str,
    body: Dict[str, Any],
    *,
    client: Optional[httpx.Client],
    timeout: float,
    what: str,
) -> bool:
    try:
        if client is not None:
            r = client.post(url, json=body)
        else:
            with httpx.Client(timeout=timeout) as c:
                r = c.post(url, json=body)
    except httpx.HTTPError as e:
        logger.error("%s request failed: %s", what, e)
        return False

    if not r.is_success:
        logger.error("%s request returned unexpected status: %s", what, r.status_code)
        return False
    return True


def ping_telemetry(
    event: str,
    data: Any,
    *,
    url: Optional[str],
    client: Optional[httpx.Client] = None,
    timeout: float = 10.0,
) -> bool:
    """Forward a telemetry event upstream. Failures are logged, never raised."""
    logger.info("PingTelemetry %s %s", event, data)
    if not url:
        return True

    body = {"event": event, **data} if isinstance(data, dict) else {"event": event, "data": data}
    return _post_json(url, body, client=client, timeout=timeout, what="Telemetry")


def submit_feedback(
    explanation: str,
    messages: List[Dict[str, Any]],
    *,
    url: Optional[str],
    client: Optional[httpx.Client] = None,
    timeout: float = 10.0,
) -> bool:
    """Share a rejected change with the project owners. Returns False if it was not delivered."""
    if not url:
        logger.info("Feedback dropped, no feedback_url configured")
        return False
    body = {"explanation": explanation, "chatMessages": messages}
    return _post_json(url, body, client=client, timeout=timeout, what="Feedback")


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    model: Optional[Any] = None,
    sessions: Optional[SessionRegistry] = None,
    http_client: Optional[httpx.Client] = None,
) -> FastAPI:
    cfg = load_config(config_path)

    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])
    telemetry_cfg = cfg.get("telemetry", {}) or {}
    ping_url = telemetry_cfg.get("ping_url")
    feedback_url = telemetry_cfg.get("feedback_url")

    model = model if model is not None else create_from_config(cfg)
    sessions = sessions or SessionRegistry()

    app = FastAPI(title="Nut Chat Server", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "classifier_loaded": model is not None,
            "config_keys": list(cfg.keys()),
        }

    @app.get("/config")
    def get_config() -> JSONResponse:
        return JSONResponse(_redact(cfg))

    # --------- simulation decision ----------
    @app.post("/api/use-simulation", response_model=UseSimulationResponse)
    def use_simulation(req: UseSimulationRequest):
        if model is None:
            raise HTTPException(status_code=503, detail="Classifier is not configured.")
        try:
            response_text = model.generate(build_classifier_prompt(req.message_input))
        except ClassifierError as e:
            logger.error("UseSimulation classifier failed: %s", e)
            raise HTTPException(status_code=502, detail="Classifier request failed.") from e

        logger.info("UseSimulationResponse %s", response_text)
        return UseSimulationResponse(use_simulation=parse_analyze_verdict(response_text))

    @app.post("/api/ping-telemetry")
    def ping(req: PingTelemetryRequest) -> Dict[str, Any]:
        return {"success": ping_telemetry(req.event, req.data, url=ping_url, client=http_client)}

    # --------- timeline ----------
    def _existing(chat_id: str) -> ConversationSession:
        session = sessions.find(chat_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Chat not found")
        return session

    @app.get("/api/chats/{chat_id}/messages")
    def list_messages(chat_id: str) -> Dict[str, Any]:
        return _timeline_payload(_existing(chat_id))

    @app.post("/api/chats/{chat_id}/messages")
    def add_message(chat_id: str, req: AddMessageRequest) -> Dict[str, Any]:
        session = sessions.get(chat_id)
        try:
            session.add_response_message(req.message, expected_version=req.expected_version)
        except (TypeMismatch, StaleTimelineError) as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        return _timeline_payload(session)

    @app.post("/api/chats/{chat_id}/approve")
    def approve_change(chat_id: str, req: ApproveChangeRequest) -> Dict[str, Any]:
        session = _existing(chat_id)
        if session.timeline.find(req.message_id) is None:
            raise HTTPException(status_code=404, detail="Message not found")
        session.approve_change(req.message_id)
        ping_telemetry("ApproveChange", {"numMessages": len(session.timeline)}, url=ping_url, client=http_client)
        return _timeline_payload(session)

    @app.post("/api/chats/{chat_id}/reject")
    def reject_change(chat_id: str, req: RejectChangeRequest) -> Dict[str, Any]:
        session = _existing(chat_id)
        before = session.timeline.messages
        try:
            result = session.reject_change(req.message_id)
        except StaleTimelineError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        if result is None:
            raise HTTPException(status_code=404, detail="Rewind message not found")

        share_success = False
        if req.share_project:
            share_success = submit_feedback(
                req.explanation,
                [to_wire(m) for m in before],
                url=feedback_url,
                client=http_client,
            )
        ping_telemetry(
            "RejectChange",
            {
                "shareProject": req.share_project,
                "shareProjectSuccess": share_success,
                "numMessages": len(before),
            },
            url=ping_url,
            client=http_client,
        )

        payload = _timeline_payload(session)
        payload.update(
            {
                "index": result.index,
                "removed": [m.id for m in result.removed],
                "repositoryId": result.repository_id,
                "refundedPeanuts": result.refunded_peanuts,
                "retry": req.retry,
            }
        )
        return payload

    return app
