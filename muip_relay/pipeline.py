"""Session-authorized command execution against the dispatch API.

One logical request walks a strictly linear sequence::

    create_session -> encrypt(admin key) -> authorize -> encrypt(command) -> exec_cmd

Each run opens a brand-new dispatch session; sessions are never cached or
shared between requests. There are no retries: any failure before
``exec_cmd`` aborts the run and propagates, while a refused ``exec_cmd`` is
returned as a failed :class:`CommandResult`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from . import constants
from .adapters.dispatch import DispatchClient
from .core.models import (
    AuthorizedSession,
    CommandResult,
    Envelope,
    Session,
)
from .crypto import CryptoCodec, decode_message

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AuthorizedRun:
    """Stages completed before a command or query may be issued."""

    session: Session
    authorized: AuthorizedSession
    codec: CryptoCodec


class CommandPipeline:
    """Runs admin commands and read-only queries through fresh sessions."""

    def __init__(
        self,
        client: DispatchClient,
        *,
        admin_key: str,
        default_key_type: str = constants.DEFAULT_KEY_TYPE,
    ) -> None:
        self._client = client
        self._admin_key = admin_key
        self._default_key_type = default_key_type

    async def run(
        self, key_type: Optional[str], target_uid: str, command: str
    ) -> CommandResult:
        """Execute ``command`` for ``target_uid`` and decode the reply text."""

        LOGGER.info("Processing command for uid %s", target_uid)
        prepared = await self._open(key_type)

        LOGGER.debug(
            "Encrypting command for session %s", prepared.authorized.session_id
        )
        ciphertext = prepared.codec.encrypt(command)

        result = await self._client.execute_command(
            prepared.authorized.session_id, ciphertext, target_uid
        )
        if not result.ok:
            return result

        LOGGER.debug(
            "Session %s executed command", prepared.authorized.session_id
        )
        message = result.data.get("message")
        if not isinstance(message, str):
            return result

        decoded = decode_message(message)
        LOGGER.info("Command result for uid %s: %s", target_uid, decoded)
        return result.with_message(decoded)

    async def query_status(self) -> Envelope:
        prepared = await self._open(None)
        return await self._client.query_status(prepared.authorized.session_id)

    async def query_player_info(self, uid: str) -> Envelope:
        prepared = await self._open(None)
        return await self._client.query_player_info(
            prepared.authorized.session_id, uid
        )

    async def _open(self, key_type: Optional[str]) -> AuthorizedRun:
        session = await self._client.create_session(key_type or self._default_key_type)
        LOGGER.debug("Session %s created", session.session_id)

        # The same session key encrypts both the admin key and the command,
        # whatever authorize returns.
        codec = CryptoCodec.from_pem(session.public_key)
        admin_ciphertext = codec.encrypt(self._admin_key)

        authorized = await self._client.authorize(session.session_id, admin_ciphertext)
        LOGGER.debug(
            "Session %s authorized as %s", session.session_id, authorized.session_id
        )
        return AuthorizedRun(session=session, authorized=authorized, codec=codec)
