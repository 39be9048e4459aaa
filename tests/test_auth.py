"""AuthSession bootstrap and the credential store."""

import asyncio
import json

import httpx
import pytest

from conftest import BASE_URL
from fotobudka.auth import AuthSession, AuthState, ProfileIdentityProvider, StaticIdentityProvider, extract_profile_id
from fotobudka.credentials import CredentialStore
from fotobudka.errors import DecodingError
from fotobudka.gateway import HttpGateway


class BrokenIdentity:
    name = "broken"

    async def resolve_external_id(self):
        raise RuntimeError("sdk not activated")


@pytest.fixture()
def credentials(tmp_path):
    return CredentialStore(tmp_path / "session.json")


@pytest.fixture()
def make_session(backend, credentials):
    def _make(identity=None, alternate_identity=None, use_alternate_identity=False):
        gateway = HttpGateway(BASE_URL, token_provider=credentials.get_token, transport=backend.transport)
        return AuthSession(
            gateway,
            credentials,
            identity=identity,
            alternate_identity=alternate_identity,
            use_alternate_identity=use_alternate_identity,
        )
    return _make


def test_bootstrap_with_stored_token_makes_no_requests(backend, credentials, make_session):
    credentials.save_token("stored")
    session = make_session(StaticIdentityProvider("primary", "ext-1"))

    state = asyncio.run(session.bootstrap())

    assert state is AuthState.AUTHENTICATED
    assert session.token == "stored"
    assert backend.requests == []


def test_bootstrap_registers_then_authorizes(backend, credentials, make_session):
    backend.on("POST", "/api/users", {"id": "u-42"})
    backend.on("POST", "/api/users/authorize", {"access_token": "tok-1", "token_type": "bearer"})
    session = make_session(StaticIdentityProvider("primary", "ext-1"))

    state = asyncio.run(session.bootstrap())

    assert state is AuthState.AUTHENTICATED
    register, authorize = backend.requests
    assert json.loads(register.content) == {"external_id": "ext-1"}
    assert json.loads(authorize.content) == {"user_id": "u-42"}
    assert "Authorization" not in register.headers
    assert credentials.get_user_id() == "u-42"
    assert credentials.credentials.external_id == "ext-1"
    assert CredentialStore(credentials.path).get_token() == "tok-1"


def test_bootstrap_with_stored_user_id_skips_register(backend, credentials, make_session):
    credentials.save_user_id("u-7")
    backend.on("POST", "/api/users/authorize", {"access_token": "tok-7"})
    session = make_session(StaticIdentityProvider("primary", "ext-1"))

    assert asyncio.run(session.bootstrap()) is AuthState.AUTHENTICATED
    assert backend.calls("POST", "/api/users") == []
    assert session.token == "tok-7"


def test_register_conflict_with_stored_user_id_authorizes(backend, credentials, make_session):
    backend.on("POST", "/api/users", httpx.Response(422, json={"detail": "already exists"}))
    backend.on("POST", "/api/users/authorize", {"access_token": "tok-9"})
    credentials.save_user_id("u-9")
    session = make_session()

    assert asyncio.run(session.register("ext-1")) is True
    assert session.is_authorized


def test_register_conflict_without_user_id_fails(backend, make_session):
    backend.on("POST", "/api/users", httpx.Response(422, json={"detail": "already exists"}))
    session = make_session(StaticIdentityProvider("primary", "ext-1"))

    assert asyncio.run(session.bootstrap()) is AuthState.UNAUTHENTICATED
    assert backend.calls("POST", "/api/users/authorize") == []


def test_authorize_without_token_in_response_fails(backend, credentials, make_session):
    backend.on("POST", "/api/users", {"id": "u-1"})
    backend.on("POST", "/api/users/authorize", {"token_type": "bearer"})
    session = make_session(StaticIdentityProvider("primary", "ext-1"))

    assert asyncio.run(session.bootstrap()) is AuthState.UNAUTHENTICATED
    assert credentials.get_token() is None
    assert credentials.get_user_id() == "u-1"


def test_network_failure_leaves_session_unauthenticated(backend, make_session):
    backend.on("POST", "/api/users", httpx.ConnectError("offline"))
    session = make_session(StaticIdentityProvider("primary", "ext-1"))

    assert asyncio.run(session.bootstrap()) is AuthState.UNAUTHENTICATED


@pytest.mark.parametrize("identity", [
    StaticIdentityProvider("primary", ""),
    StaticIdentityProvider("primary", None),
    BrokenIdentity(),
    None,
])
def test_missing_identity_leaves_session_unauthenticated(backend, make_session, identity):
    session = make_session(identity)

    assert asyncio.run(session.bootstrap()) is AuthState.UNAUTHENTICATED
    assert backend.requests == []


def test_alternate_identity_flag_does_not_fall_back(backend, make_session):
    session = make_session(
        identity=StaticIdentityProvider("primary", "ext-1"),
        alternate_identity=BrokenIdentity(),
        use_alternate_identity=True,
    )

    assert asyncio.run(session.bootstrap()) is AuthState.UNAUTHENTICATED
    assert backend.requests == []


def test_profile_identity_provider_reads_allowed_fields(backend, make_session):
    backend.on("POST", "/api/users", {"id": "u-5"})
    backend.on("POST", "/api/users/authorize", {"access_token": "tok-5"})

    async def fetch_profile():
        return {"customer_user_id": "cust-5", "email": "someone@example.com"}

    session = make_session(ProfileIdentityProvider("sdk", fetch_profile))

    assert asyncio.run(session.bootstrap()) is AuthState.AUTHENTICATED
    assert json.loads(backend.requests[0].content) == {"external_id": "cust-5"}


def test_extract_profile_id_order_and_blanks():
    class Profile:
        profile_id = "  "
        customer_user_id = "cust-1"
        user_id = "user-1"

    assert extract_profile_id(Profile()) == "cust-1"
    assert extract_profile_id({"user_id": 17}) is None
    assert extract_profile_id({"internal_id": "x"}) is None
    assert extract_profile_id(None) is None
    assert extract_profile_id({"user_id": "u"}, fields=("profile_id",)) is None


def test_fetch_current_user(backend, credentials, make_session):
    credentials.save_token("tok")
    backend.on("GET", "/api/users/me", {"id": "u-1", "tokens": 40, "avatar_tokens": 2})
    session = make_session()

    user = asyncio.run(session.fetch_current_user())

    assert (user.id, user.tokens, user.avatar_tokens) == ("u-1", 40, 2)
    assert backend.requests[0].headers["Authorization"] == "Bearer tok"


def test_fetch_current_user_rejects_non_object(backend, credentials, make_session):
    credentials.save_token("tok")
    backend.on("GET", "/api/users/me", [1, 2, 3])

    with pytest.raises(DecodingError):
        asyncio.run(make_session().fetch_current_user())


def test_sign_out_clears_credentials(credentials, make_session):
    credentials.save_user_id("u-1", "ext-1")
    credentials.save_token("tok")
    session = make_session()

    session.sign_out()

    assert session.state is AuthState.UNAUTHENTICATED
    assert not credentials.path.exists()
    assert CredentialStore(credentials.path).get_token() is None


def test_corrupt_credentials_file_is_ignored(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("not json at all")

    assert CredentialStore(path).get_token() is None


def test_unwritable_credentials_leave_session_unauthenticated(backend, tmp_path):
    (tmp_path / "blocked").write_text("a file where the data dir should be")
    credentials = CredentialStore(tmp_path / "blocked" / "session.json")
    backend.on("POST", "/api/users", {"id": "u-1"})
    backend.on("POST", "/api/users/authorize", {"access_token": "tok-1"})
    gateway = HttpGateway(BASE_URL, token_provider=credentials.get_token, transport=backend.transport)
    session = AuthSession(gateway, credentials, identity=StaticIdentityProvider("primary", "ext-1"))

    assert asyncio.run(session.bootstrap()) is AuthState.UNAUTHENTICATED
    assert credentials.get_user_id() is None
    assert backend.calls("POST", "/api/users/authorize") == []


def test_failed_token_write_is_not_kept_in_memory(backend, credentials, make_session, monkeypatch):
    backend.on("POST", "/api/users/authorize", {"access_token": "tok-1"})
    session = make_session()

    def fail_replace(src, dst):
        raise OSError("read-only file system")

    monkeypatch.setattr("fotobudka.credentials.os.replace", fail_replace)

    assert asyncio.run(session.authorize("u-1")) is False
    assert session.state is AuthState.UNAUTHENTICATED
    assert credentials.get_token() is None
