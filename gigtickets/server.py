from __future__ import annotations
import logging
import os
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi import Form
from fastapi.responses import HTMLResponse, RedirectResponse, ORJSONResponse
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

from . import __version__
from .config import Settings, setup_logging
from .errors import GenerationFailure, InvalidWebhook, LedgerUnavailable
from .fulfillment import FulfillmentOrchestrator
from .helpers import ct_equal, current_event_date, normalize_code, to_iso
from .infra import timings
from .mockpay import MockPay, PaymentAdapter
from .model.ledger import Ledger, new_ledger
from .notifier import Notifier, new_notifier
from .qr import CodeRenderer
from .redemption import RedemptionGate
from .reporting import ReportingView
from .templates import render

logger = logging.getLogger(__name__)


# ----------------------------
# Dependencies (everything lives on app.state, built at startup)
# ----------------------------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_ledger(request: Request) -> Ledger:
    return request.app.state.ledger


def get_gate(request: Request) -> RedemptionGate:
    return request.app.state.gate


def get_orchestrator(request: Request) -> FulfillmentOrchestrator:
    return request.app.state.orchestrator


def get_reporting(request: Request) -> ReportingView:
    return request.app.state.reporting


def get_renderer(request: Request) -> CodeRenderer:
    return request.app.state.renderer


def get_adapter(request: Request) -> PaymentAdapter:
    return request.app.state.adapter


# ----------------------------
# Helpers
# ----------------------------
def is_admin(request: Request) -> bool:
    return bool(request.session.get("admin_user"))


def require_admin(request: Request) -> None:
    if not is_admin(request):
        # preserve where we wanted to go
        dest = request.url.path
        raise HTTPException(status_code=307, detail="redirect to login",
                            headers={"Location": f"/admin/login?next={dest}"})


def local_path(dest: str, fallback: str = "/admin") -> str:
    # "//host" and "/\host" are read by browsers as other sites
    if not dest.startswith("/") or dest.startswith(("//", "/\\")):
        return fallback
    return dest


def create_app(
    settings: Optional[Settings] = None,
    *,
    ledger: Optional[Ledger] = None,
    notifier: Optional[Notifier] = None,
    adapter: Optional[PaymentAdapter] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="Gig Tickets",
        default_response_class=ORJSONResponse,
    )
    app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)
    app.state.settings = settings

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _wire():
        state = app.state
        state.renderer = CodeRenderer(settings.base_url)
        state.ledger = ledger or new_ledger(
            settings.ledger_backend,
            database_url=settings.database_url,
            redis_url=settings.redis_url,
            pool=settings.pool_options(),
        )
        await state.ledger.init_schema()
        state.adapter = adapter or MockPay(settings.mock_secret)
        state.orchestrator = FulfillmentOrchestrator(
            state.ledger, notifier or new_notifier(settings, state.renderer),
        )
        state.gate = RedemptionGate(state.ledger)
        state.reporting = ReportingView(state.ledger)

        logger.info(
            "%s starting up: ledger backend %s, notifier %s, event %s",
            app.title, type(state.ledger).__name__,
            type(state.orchestrator.notifier).__name__,
            current_event_date(),
        )

    @app.on_event("shutdown")
    async def _ledger_stop():
        lg = getattr(app.state, "ledger", None)
        if lg is not None:
            await lg.close()
            app.state.ledger = None

    # ---
    # error mapping
    # ---
    @app.exception_handler(LedgerUnavailable)
    async def _ledger_unavailable(request: Request, exc: LedgerUnavailable):
        return ORJSONResponse(
            {"status": "error", "message": "Database error"}, status_code=503
        )

    @app.exception_handler(GenerationFailure)
    async def _generation_failure(request: Request, exc: GenerationFailure):
        logger.error("%s", exc)
        return ORJSONResponse(
            {"ok": False, "error": "ticket generation failed"},
            status_code=500,
        )

    @app.exception_handler(InvalidWebhook)
    async def _invalid_webhook(request: Request, exc: InvalidWebhook):
        logger.warning("rejected webhook: %s", exc)
        return ORJSONResponse({"detail": str(exc)}, status_code=400)

    # ----------------------------
    # Public
    # ----------------------------
    @app.get("/")
    async def health():
        return {
            "status": "ok",
            "message": "Embedded Ticket Automation API",
            "version": __version__,
        }

    @app.get("/current-event")
    async def current_event(s: Settings = Depends(get_settings)):
        return {
            "name": s.event_name,
            "event_date": current_event_date(),
            "venue": s.venue_name,
            "price": s.ticket_price,
            "currency": s.currency,
        }

    # ----------------------------
    # Webhook endpoint
    # ----------------------------
    @app.post("/payments/webhook")
    async def payments_webhook(
        request: Request,
        adapter: PaymentAdapter = Depends(get_adapter),
        orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
        s: Settings = Depends(get_settings),
    ):
        payload = await request.body()
        headers = dict(request.headers)

        event = adapter.verify_webhook(payload, headers)
        kind = adapter.event_kind(event)  # succeeded | failed | canceled
        if kind != "succeeded":
            # nothing was minted for it, nothing to undo
            return {"ok": True, "ignored": kind}

        confirmed = adapter.payment_confirmed(event, s.ticket_price)
        logger.info(
            "Payment successful for: %s (%s)",
            confirmed.buyer_email, confirmed.payment_ref,
        )
        result = await orchestrator.fulfill(confirmed)
        if result.duplicate:
            return {"ok": True, "idempotent": True}
        return {
            "ok": True,
            "idempotent": False,
            "order_id": result.order_id,
            "tickets": len(result.tickets),
            "notified": result.notified,
        }

    # ----------------------------
    # API: Order status (polled by the success page)
    # ----------------------------
    @app.get("/api/orders/{order_id}")
    async def get_order(order_id: str, ledger: Ledger = Depends(get_ledger)):
        order = await ledger.get_order(order_id)
        if order is None:
            # not created yet (webhook still processing)
            raise HTTPException(404, detail="order not found")
        tickets = await ledger.tickets_for_order(order_id)
        return {
            "order_id": order.id,
            "amount": order.amount,
            "created_at": to_iso(order.created_at),
            "tickets": [
                {
                    "ticket_code": t.code,
                    "event_date": t.event_date,
                    "redeemed": t.redeemed,
                }
                for t in tickets
            ],
        }

    @app.get("/tickets/{code}", response_class=HTMLResponse)
    async def ticket_page(
        code: str,
        date: Optional[str] = None,
        ledger: Ledger = Depends(get_ledger),
        renderer: CodeRenderer = Depends(get_renderer),
        s: Settings = Depends(get_settings),
    ):
        event_date = date or current_event_date()
        ticket = await ledger.find_ticket(normalize_code(code), event_date)
        if ticket is None:
            raise HTTPException(404, detail="ticket not found")
        return HTMLResponse(render(
            "ticket.html",
            event_name=s.event_name,
            venue_name=s.venue_name,
            event_date=ticket.event_date,
            code=ticket.code,
            redeemed=ticket.redeemed,
            qr=renderer.data_url(ticket.code),
        ))

    # ----------------------------
    # Door: check-in and scan verification
    # ----------------------------
    @app.post("/checkin")
    async def checkin(payload: dict, gate: RedemptionGate = Depends(get_gate)):
        code = payload.get("ticketCode")
        if not code:
            return {"status": "invalid", "message": "Ticket code required"}
        event_date = payload.get("eventDate") or current_event_date()
        outcome = await gate.check_in(str(code), str(event_date))
        return {"status": outcome.value, "message": outcome.message}

    @app.get("/verify/{code}", response_class=HTMLResponse)
    async def verify(code: str, gate: RedemptionGate = Depends(get_gate)):
        outcome = await gate.verify(code)
        return HTMLResponse(render(
            "verify.html",
            outcome=outcome.value,
            code=normalize_code(code),
            event_date=gate.current_event(),
        ))

    # ----------------------------
    # Admin
    # ----------------------------
    @app.get("/offline-tickets", dependencies=[Depends(require_admin)])
    async def offline_tickets(
        date: Optional[str] = None,
        reporting: ReportingView = Depends(get_reporting),
    ):
        codes = await reporting.export(date)
        return [{"ticket_code": c} for c in codes]

    @app.get("/admin/stats", dependencies=[Depends(require_admin)])
    async def admin_stats(
        date: Optional[str] = None,
        reporting: ReportingView = Depends(get_reporting),
    ):
        return (await reporting.aggregate(date)).as_dict()

    @app.get("/admin/timings", dependencies=[Depends(require_admin)])
    async def admin_timings():
        return {"items": timings.aggregates()}

    @app.get("/admin/login", response_class=HTMLResponse)
    async def admin_login_get(request: Request, next: str | None = "/admin"):
        return HTMLResponse(render("login.html", next=next, error=None))

    @app.post("/admin/login", response_class=HTMLResponse)
    async def admin_login_post(
        request: Request,
        username: str = Form(...),
        password: str = Form(...),
        next: str = Form("/admin"),
        s: Settings = Depends(get_settings),
    ):
        ok_user = ct_equal(username.strip(), s.admin_username)
        ok_pass = ct_equal(password, s.admin_password)
        if ok_user and ok_pass:
            request.session["admin_user"] = username.strip()
            return RedirectResponse(
                url=local_path(next), status_code=HTTP_303_SEE_OTHER
            )
        # auth failed
        return HTMLResponse(
            render("login.html", next=next, error="Invalid credentials."),
            status_code=401,
        )

    @app.get("/admin/logout")
    async def admin_logout(request: Request):
        request.session.clear()
        return RedirectResponse(url="/", status_code=HTTP_303_SEE_OTHER)

    @app.get("/admin", response_class=HTMLResponse)
    async def admin_page(
        request: Request,
        reporting: ReportingView = Depends(get_reporting),
        s: Settings = Depends(get_settings),
    ):
        if not is_admin(request):
            dest = request.url.path
            return RedirectResponse(
                url=f"/admin/login?next={dest}",
                status_code=307
            )
        event_date = current_event_date()
        stats = await reporting.aggregate(event_date)
        return HTMLResponse(render(
            "admin.html",
            event_name=s.event_name,
            event_date=event_date,
            stats=stats.as_dict(),
        ))

    return app


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
    )


if __name__ == "__main__":
    main()
