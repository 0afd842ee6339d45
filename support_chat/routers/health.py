from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from support_chat.database import get_db
from support_chat.dependencies import get_current_actor
from support_chat.services.health_service import check_and_heal_counters, get_chat_health, probe_store
from support_chat.services.permissions import ensure_staff
from support_chat.services.roles import Actor

router = APIRouter(prefix="/chat", tags=["health"])


@router.get("/health")
def chat_health(db: Session = Depends(get_db)):
    """Store connectivity plus conversation counts."""
    probe = probe_store()
    if not probe.ok:
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "store": {"ok": False, "error": probe.error, "error_code": probe.error_code}},
        )
    return {"status": "ok", "store": {"ok": True}, **get_chat_health(db)}


@router.post("/heal")
def heal_counters(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    """Check and heal counter drift."""
    ensure_staff(actor, "heal conversation counters")
    return check_and_heal_counters(db)
