"""HTTP client for the game-server dispatch (MUIP) admin API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

import aiohttp

from .. import constants
from ..config import DispatchConfig
from ..core.models import (
    AuthorizedSession,
    CommandResult,
    Envelope,
    PipelineStage,
    Session,
)
from ..errors import RelayError, RemoteRejected, TransportError

LOGGER = logging.getLogger(__name__)


class DispatchClient:
    """Thin wrapper around the dispatch endpoints.

    Every operation is a single JSON ``POST`` answered with an envelope
    ``{code, message, data}``. The client keeps no per-request state; the
    only thing it holds on to is the underlying ``aiohttp`` session.
    """

    def __init__(
        self,
        config: DispatchConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config
        self._base_url = config.url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=config.timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None

    async def __aenter__(self) -> "DispatchClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def create_session(self, key_type: str) -> Session:
        """Open a fresh dispatch session and fetch its RSA public key."""

        stage = PipelineStage.CREATE_SESSION.value
        LOGGER.info("Creating dispatch session (key_type=%s)", key_type)
        envelope = await self._post(
            stage, constants.CREATE_SESSION_PATH, {"key_type": key_type}
        )
        self._require_ok(stage, envelope)

        data = _require_mapping(stage, envelope.data)
        session_id = data.get("sessionId")
        public_key = data.get("rsaPublicKey")
        if not session_id or not public_key:
            raise TransportError(
                stage, "session response missing sessionId or rsaPublicKey"
            )

        LOGGER.info("Dispatch session %s created", session_id)
        return Session(session_id=str(session_id), public_key=str(public_key))

    async def authorize(
        self, session_id: str, admin_key_ciphertext: str
    ) -> AuthorizedSession:
        """Authorize ``session_id`` with the encrypted admin key."""

        stage = PipelineStage.AUTHORIZE.value
        LOGGER.info("Authorizing dispatch session %s", session_id)
        envelope = await self._post(
            stage,
            constants.AUTH_ADMIN_PATH,
            {"session_id": session_id, "admin_key": admin_key_ciphertext},
        )
        self._require_ok(stage, envelope)

        data = _require_mapping(stage, envelope.data)
        authorized_id = data.get("sessionId")
        if not authorized_id:
            raise TransportError(stage, "authorization response missing sessionId")

        LOGGER.info("Dispatch session %s authorized", authorized_id)
        return AuthorizedSession(session_id=str(authorized_id))

    async def execute_command(
        self, session_id: str, ciphertext: str, target_uid: str
    ) -> CommandResult:
        """Run an encrypted command for ``target_uid``.

        Failures are returned as ``CommandResult.failure`` rather than raised:
        a refused command is an expected outcome the caller has to display.
        """

        stage = PipelineStage.EXECUTE.value
        LOGGER.info("Executing command for uid %s", target_uid)
        try:
            envelope = await self._post(
                stage,
                constants.EXEC_CMD_PATH,
                {"SessionId": session_id, "Command": ciphertext, "TargetUid": target_uid},
            )
        except RelayError as exc:
            LOGGER.error("Command execution for uid %s failed: %s", target_uid, exc)
            return CommandResult.failure(f"Execution error: {exc}")

        if not envelope.ok:
            LOGGER.error(
                "Command execution for uid %s rejected (code=%s): %s",
                target_uid,
                envelope.code,
                envelope.message,
            )
            return CommandResult.failure(f"Execution failed: {envelope.message}")

        LOGGER.info("Command executed for uid %s", target_uid)
        return CommandResult.from_envelope(envelope)

    async def query_status(self, session_id: str) -> Envelope:
        """Fetch server information using an authorized session."""

        stage = PipelineStage.QUERY.value
        LOGGER.info("Fetching server status")
        envelope = await self._post(
            stage, constants.SERVER_INFORMATION_PATH, {"SessionId": session_id}
        )
        self._require_ok(stage, envelope)
        return envelope

    async def query_player_info(self, session_id: str, uid: str) -> Envelope:
        """Fetch player information for ``uid`` using an authorized session."""

        stage = PipelineStage.QUERY.value
        LOGGER.info("Fetching player info for uid %s", uid)
        envelope = await self._post(
            stage,
            constants.PLAYER_INFORMATION_PATH,
            {"SessionId": session_id, "Uid": uid},
        )
        self._require_ok(stage, envelope)
        return envelope

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def _post(
        self, stage: str, path: str, payload: Mapping[str, Any]
    ) -> Envelope:
        session = await self._ensure_session()
        url = f"{self._base_url}{path}"

        try:
            async with session.post(
                url, json=dict(payload), timeout=self._timeout
            ) as response:
                LOGGER.debug("POST %s - %s", url, response.status)
                if response.status >= 400:
                    detail = await response.text()
                    raise TransportError(
                        stage,
                        f"HTTP {response.status} from {path}: {detail.strip()[:200]}",
                    )
                body = await response.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise TransportError(
                stage,
                f"request to {path} timed out after {self.config.timeout_seconds:.1f}s",
                exc,
            ) from exc
        except aiohttp.ClientError as exc:
            raise TransportError(stage, f"request to {path} failed: {exc}", exc) from exc
        except ValueError as exc:
            raise TransportError(
                stage, f"response from {path} is not valid JSON", exc
            ) from exc

        return _parse_envelope(stage, path, body)

    @staticmethod
    def _require_ok(stage: str, envelope: Envelope) -> None:
        if not envelope.ok:
            LOGGER.error(
                "Dispatch %s failed (code=%s): %s", stage, envelope.code, envelope.message
            )
            raise RemoteRejected(stage, envelope.message, envelope.code)


def _parse_envelope(stage: str, path: str, body: Any) -> Envelope:
    if not isinstance(body, dict):
        raise TransportError(stage, f"response from {path} is not a JSON object")

    code = body.get("code")
    if isinstance(code, bool) or not isinstance(code, int):
        raise TransportError(stage, f"response from {path} has no integer code")

    message = body.get("message")
    return Envelope(
        code=code,
        message="" if message is None else str(message),
        data=body.get("data"),
    )


def _require_mapping(stage: str, data: Any) -> Mapping[str, Any]:
    if not isinstance(data, dict):
        raise TransportError(stage, "response data is not a JSON object")
    return data
