import base64
from typing import Any, Callable, Dict

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from muip_relay import constants
from muip_relay.config import DispatchConfig

ADMIN_KEY = "s3cret-admin"

Responder = Callable[[Dict[str, Any]], web.StreamResponse]


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_public_pem(rsa_private_key: rsa.RSAPrivateKey) -> str:
    return (
        rsa_private_key.public_key()
        .public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("ascii")
    )


class FakeDispatch:
    """In-process stand-in for the dispatch MUIP endpoints."""

    def __init__(self, private_key: rsa.RSAPrivateKey, public_pem: str) -> None:
        self.private_key = private_key
        self.public_pem = public_pem
        self.admin_key = ADMIN_KEY
        self.calls: list[tuple[str, Dict[str, Any]]] = []
        self.commands: list[str] = []
        self.overrides: Dict[str, Responder] = {}
        self.url = ""

    @property
    def paths(self) -> list[str]:
        return [path for path, _ in self.calls]

    def decrypt(self, ciphertext_b64: str) -> str:
        return self.private_key.decrypt(
            base64.b64decode(ciphertext_b64), padding.PKCS1v15()
        ).decode("utf-8")

    def reply(self, path: str, body: Dict[str, Any], status: int = 200) -> None:
        self.overrides[path] = lambda _payload: web.json_response(body, status=status)

    def build_app(self) -> web.Application:
        app = web.Application()
        for path in (
            constants.CREATE_SESSION_PATH,
            constants.AUTH_ADMIN_PATH,
            constants.EXEC_CMD_PATH,
            constants.SERVER_INFORMATION_PATH,
            constants.PLAYER_INFORMATION_PATH,
        ):
            app.router.add_post(path, self._handle)
        return app

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        payload = await request.json()
        self.calls.append((request.path, payload))

        override = self.overrides.get(request.path)
        if override is not None:
            return override(payload)

        if request.path == constants.CREATE_SESSION_PATH:
            return web.json_response(
                {
                    "code": 0,
                    "message": "Created",
                    "data": {"sessionId": "session-1", "rsaPublicKey": self.public_pem},
                }
            )

        if request.path == constants.AUTH_ADMIN_PATH:
            if self.decrypt(payload["admin_key"]) != self.admin_key:
                return web.json_response(
                    {"code": 2, "message": "Admin key mismatch", "data": None}
                )
            return web.json_response(
                {"code": 0, "message": "Authorized", "data": {"sessionId": "session-2"}}
            )

        if request.path == constants.EXEC_CMD_PATH:
            command = self.decrypt(payload["Command"])
            self.commands.append(command)
            reply = base64.b64encode(f"Executed: {command}".encode("utf-8")).decode()
            return web.json_response(
                {
                    "code": 0,
                    "message": "Success",
                    "data": {"sessionId": payload["SessionId"], "message": reply},
                }
            )

        if request.path == constants.SERVER_INFORMATION_PATH:
            return web.json_response(
                {"code": 0, "message": "", "data": {"onlinePlayers": 3}}
            )

        return web.json_response(
            {"code": 0, "message": "", "data": {"uid": payload["Uid"], "level": 70}}
        )


@pytest_asyncio.fixture
async def dispatch_server(rsa_private_key, rsa_public_pem):
    fake = FakeDispatch(rsa_private_key, rsa_public_pem)
    async with TestServer(fake.build_app()) as server:
        fake.url = str(server.make_url("/"))
        yield fake


@pytest.fixture
def dispatch_config(dispatch_server: FakeDispatch) -> DispatchConfig:
    return DispatchConfig(
        url=dispatch_server.url, admin_key=ADMIN_KEY, timeout_seconds=2.0
    )
