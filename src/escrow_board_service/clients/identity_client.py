"""Async HTTP client for the Identity service."""

from __future__ import annotations

from typing import Any

import httpx

from escrow_board_service.core.exceptions import ServiceError
from escrow_board_service.logging import get_logger


def _unavailable(message: str) -> ServiceError:
    return ServiceError(
        error="IDENTITY_SERVICE_UNAVAILABLE",
        message=message,
        status_code=502,
        details={},
    )


class IdentityClient:
    """
    Resolves who signed a request to the escrow board.

    Every signed POST (create, accept, complete and cancel a task, change the
    platform fee, emergency withdraw, credit an account) carries a JWS token.
    The board holds no public keys; it forwards the token to the Identity
    service and treats the signer it reports as the registry caller.
    """

    def __init__(
        self,
        base_url: str,
        verify_jws_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._verify_jws_path = verify_jws_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )
        self._logger = get_logger(__name__)

    async def verify_jws(self, token: str) -> dict[str, Any]:
        """
        Ask the Identity service who signed ``token``.

        The returned mapping holds ``valid``, the signer's ``agent_id`` and
        the decoded ``payload``. Checking the payload's action and fields is
        left to the router that receives it.

        Raises:
            ServiceError: FORBIDDEN when the signature does not verify, and
                IDENTITY_SERVICE_UNAVAILABLE when no usable answer comes back.
                A task operation that hits either is never attempted.
        """
        try:
            response = await self._client.post(self._verify_jws_path, json={"token": token})
        except httpx.TimeoutException as exc:
            self._logger.warning(
                "Identity service timed out verifying a signed request",
                extra={"base_url": self._base_url, "error": str(exc)},
            )
            raise _unavailable("Identity service timed out") from exc
        except httpx.HTTPError as exc:
            self._logger.warning(
                "Identity service unreachable while verifying a signed request",
                extra={"base_url": self._base_url, "error": str(exc)},
            )
            raise _unavailable("Cannot connect to Identity service") from exc

        if response.status_code != 200:
            self._logger.warning(
                "Identity service rejected the verification call",
                extra={"base_url": self._base_url, "status_code": response.status_code},
            )
            raise _unavailable("Identity service returned unexpected status")

        try:
            result = response.json()
        except ValueError as exc:
            raise _unavailable("Identity service returned invalid JSON") from exc
        if not isinstance(result, dict):
            raise _unavailable("Identity service returned an unexpected body")

        if not result.get("valid", False):
            raise ServiceError(
                error="FORBIDDEN",
                message="JWS signature verification failed",
                status_code=403,
                details={},
            )

        return result

    async def close(self) -> None:
        await self._client.aclose()
