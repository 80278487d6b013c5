import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Form
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from twilio.base.exceptions import TwilioRestException

from frontdesk.config import Settings, validate_config
from frontdesk.controller import CallController
from frontdesk.extraction import ExtractionAdapter
from frontdesk.policy import TurnResponse
from frontdesk.session_store import SessionStore
from frontdesk.telephony import place_call
from frontdesk.twiml import render

load_dotenv()

logger = logging.getLogger(__name__)

TWIML_MEDIA_TYPE = "application/xml"
TERMINAL_CALL_STATUSES = {"completed", "busy", "failed", "no-answer", "canceled"}


class OutboundCallRequest(BaseModel):
    to: str | None = None


def build_controller(settings: Settings) -> CallController:
    extractor = ExtractionAdapter(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout=settings.extraction_timeout,
    )
    return CallController(
        store=SessionStore(),
        extractor=extractor,
        turn_budget=settings.max_turns,
        transfer_to=settings.office_transfer_number,
    )


def create_app(
    settings: Settings,
    controller: CallController | None = None,
    twilio_client=None,
) -> FastAPI:
    controller = controller or build_controller(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await controller.extractor.close()

    app = FastAPI(title="Front Desk Voice Agent", lifespan=lifespan)
    app.state.settings = settings
    app.state.controller = controller

    def twiml(response: TurnResponse) -> Response:
        xml = render(response, voice=settings.tts_voice)
        return Response(content=xml, media_type=TWIML_MEDIA_TYPE)

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.post("/call")
    async def outbound_call(body: OutboundCallRequest):
        if not body.to:
            return JSONResponse({"error": "Missing 'to' (E.164 phone number)."}, status_code=400)
        try:
            call_sid = await run_in_threadpool(
                place_call, body.to, settings=settings, client=twilio_client,
            )
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        except TwilioRestException as e:
            logger.error("Outbound call to Twilio failed: %s", e)
            return JSONResponse({"error": "Call could not be placed."}, status_code=502)
        return {"ok": True, "callSid": call_sid}

    @app.post("/voice/initial")
    async def voice_initial(call_sid: str = Form(..., alias="CallSid")):
        return twiml(await controller.start_call(call_sid))

    @app.post("/voice/after-transfer")
    async def voice_after_transfer(
        call_sid: str = Form(..., alias="CallSid"),
        dial_status: str = Form("", alias="DialCallStatus"),
    ):
        return twiml(await controller.after_transfer(call_sid, dial_status))

    @app.post("/voice/gather")
    async def voice_gather(call_sid: str = Form(..., alias="CallSid")):
        return twiml(await controller.reprompt(call_sid))

    @app.post("/voice/handle")
    async def voice_handle(
        call_sid: str = Form(..., alias="CallSid"),
        speech: str = Form("", alias="SpeechResult"),
    ):
        return twiml(await controller.handle_speech(call_sid, speech))

    @app.post("/voice/status")
    async def voice_status(
        call_sid: str = Form(..., alias="CallSid"),
        call_status: str = Form("", alias="CallStatus"),
    ):
        if call_status in TERMINAL_CALL_STATUSES:
            await controller.end_call(call_sid, reason=call_status)
        return Response(status_code=204)

    return app


def _configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


_configure_logging()
validate_config()
app = create_app(Settings.from_env())


if __name__ == "__main__":
    port = int(os.getenv("PORT", "3000"))
    uvicorn.run("frontdesk.bot:app", host="0.0.0.0", port=port)
