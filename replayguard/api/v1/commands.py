import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from replayguard.schemas.command_schema import Command


router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/commands", status_code=status.HTTP_202_ACCEPTED)
async def submit_command(request: Request, command: Command):
    # Body was already hashed by the replay guard; read it again verbatim.
    raw_body = await request.body()

    logger.info(
        "command_accepted",
        extra={
            "extra_data": {
                "action": command.action,
                "fingerprint": getattr(request.state, "replay_fingerprint", None),
            }
        },
    )

    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={
            "status": "accepted",
            "action": command.action,
            "body_size": len(raw_body),
            "fingerprint": getattr(request.state, "replay_fingerprint", None),
        },
    )


@router.get("/commands")
def list_commands():
    return {"commands": []}
