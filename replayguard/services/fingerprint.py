import hashlib
from urllib.parse import quote

from starlette.requests import Request


# Header values and on-the-wire paths and queries never carry a raw newline.
FIELD_DELIMITER = "\n"
EMPTY_BODY_MARKER = ""


class FingerprintBuilder:
    """
    Deterministic request fingerprinting.
    Raw request data is never retained, only its SHA-256 digest.
    """

    @staticmethod
    def build(
        method: str,
        path: str,
        query: str,
        nonce: str,
        timestamp: str,
        body: bytes | None = None,
    ) -> str:
        body_hash = (
            hashlib.sha256(body).hexdigest() if body else EMPTY_BODY_MARKER
        )

        canonical = FIELD_DELIMITER.join(
            (
                nonce,
                timestamp,
                method.upper(),
                path.lower(),
                query.lower(),
                body_hash,
            )
        )

        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    @staticmethod
    async def build_from_request(
        request: Request,
        nonce: str,
        timestamp: str,
    ) -> str:
        """
        Fingerprint a live request.

        The body is read to completion and cached on the request,
        so downstream handlers can read it again unchanged.
        """

        body = await request.body()

        # Wire bytes, not the decoded path: "%23" and "%0A" must survive.
        raw_path = request.scope.get("raw_path")
        path = (
            raw_path.decode("latin-1")
            if raw_path
            else quote(request.scope["path"])
        )
        query = request.scope.get("query_string", b"").decode("latin-1")

        return FingerprintBuilder.build(
            method=request.method,
            path=path,
            query=query,
            nonce=nonce,
            timestamp=timestamp,
            body=body,
        )
