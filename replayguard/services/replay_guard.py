import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from starlette import status
from starlette.requests import Request

from replayguard.core.exceptions import NonceStoreUnavailableError
from replayguard.schemas.guard_schema import GuardConfig
from replayguard.services.fingerprint import FingerprintBuilder
from replayguard.services.nonce_store import NonceStore

logger = logging.getLogger(__name__)


SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

_EPOCH_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


# ─────────────────────────────────────────────
# DECISIONS
# ─────────────────────────────────────────────


class RejectCode(str, Enum):
    missing_headers = "RP-001"
    invalid_timestamp = "RP-002"
    clock_skew = "RP-003"
    replay_detected = "RP-004"


REJECT_STATUS = {
    RejectCode.missing_headers: status.HTTP_400_BAD_REQUEST,
    RejectCode.invalid_timestamp: status.HTTP_400_BAD_REQUEST,
    RejectCode.clock_skew: status.HTTP_401_UNAUTHORIZED,
    RejectCode.replay_detected: status.HTTP_409_CONFLICT,
}

REJECT_MESSAGE = {
    RejectCode.missing_headers: "Missing replay protection headers.",
    RejectCode.invalid_timestamp: "Invalid timestamp format.",
    RejectCode.clock_skew: "Request timestamp outside allowed clock skew.",
    RejectCode.replay_detected: "Replay attack detected.",
}


@dataclass(frozen=True)
class Accept:
    # None when the request bypassed protection
    fingerprint: str | None = None


@dataclass(frozen=True)
class Reject:
    code: RejectCode
    message: str
    status_code: int

    @classmethod
    def of(cls, code: RejectCode) -> "Reject":
        return cls(code=code, message=REJECT_MESSAGE[code], status_code=REJECT_STATUS[code])


Decision = Accept | Reject


def parse_epoch_seconds(value: str) -> int | None:
    """
    Parse a Unix timestamp in seconds.
    Accepts an optional sign and ASCII digits, nothing else.
    """

    candidate = value.strip()

    if not _EPOCH_PATTERN.fullmatch(candidate):
        return None

    epoch = int(candidate)

    if epoch < _INT64_MIN or epoch > _INT64_MAX:
        return None

    return epoch


# ─────────────────────────────────────────────
# GUARD
# ─────────────────────────────────────────────


class ReplayGuard:
    """
    Replay protection for state-changing requests.

    Every call to validate() yields exactly one Accept or Reject.
    Store failures raise NonceStoreUnavailableError when the guard
    fails closed, and degrade to an unprotected Accept otherwise.
    """

    def __init__(
        self,
        config: GuardConfig,
        store: NonceStore,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.store = store
        self._clock = clock

    async def validate(self, request: Request) -> Decision:
        # 1️⃣ Safe methods bypass protection
        if request.method.upper() in SAFE_METHODS:
            return Accept()

        # 2️⃣ Header extraction
        nonce = request.headers.get(self.config.nonce_header)
        timestamp = request.headers.get(self.config.timestamp_header)

        if nonce is None or timestamp is None:
            if self.config.reject_if_missing_headers:
                return self._reject(request, RejectCode.missing_headers)

            return Accept()

        # 3️⃣ Timestamp parsing
        epoch = parse_epoch_seconds(timestamp)

        if epoch is None:
            return self._reject(request, RejectCode.invalid_timestamp)

        # 4️⃣ Clock skew
        drift = abs(self._clock() - epoch)

        if drift > self.config.allowed_clock_skew.total_seconds():
            return self._reject(request, RejectCode.clock_skew, drift_seconds=round(drift, 3))

        # 5️⃣ Fingerprint
        fingerprint = await FingerprintBuilder.build_from_request(request, nonce, timestamp)

        # 6️⃣ Replay check + registration, one atomic step
        try:
            registered = await self.store.add_if_absent(fingerprint, self.config.nonce_ttl)
        except NonceStoreUnavailableError as exc:
            if self.config.fail_closed:
                logger.error(
                    "nonce_store_unavailable",
                    extra={
                        "extra_data": {
                            "backend": exc.backend,
                            "policy": "fail_closed",
                            "path": request.url.path,
                        }
                    },
                )
                raise

            logger.warning(
                "nonce_store_unavailable",
                extra={
                    "extra_data": {
                        "backend": exc.backend,
                        "policy": "fail_open",
                        "path": request.url.path,
                    }
                },
            )
            return Accept()

        if not registered:
            return self._reject(request, RejectCode.replay_detected, fingerprint=fingerprint)

        logger.debug(
            "replay_accepted",
            extra={"extra_data": {"fingerprint": fingerprint, "path": request.url.path}},
        )

        return Accept(fingerprint=fingerprint)

    def _reject(self, request: Request, code: RejectCode, **details) -> Reject:
        logger.info(
            "replay_rejected",
            extra={
                "extra_data": {
                    "code": code.value,
                    "method": request.method,
                    "path": request.url.path,
                    **details,
                }
            },
        )

        return Reject.of(code)
