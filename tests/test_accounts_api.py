import smtplib
from unittest.mock import MagicMock, patch

import pytest

from mailportal.models import SmtpAccount
from tests.conftest import auth_headers_for

ACCOUNT_PAYLOAD = {
    "name": "Work",
    "host": "smtp.example.com",
    "port": 587,
    "secure": False,
    "username": "alice@example.com",
    "password": "super-secret-password",
}


def _create(client, headers, **overrides):
    response = client.post("/smtp/configs", json={**ACCOUNT_PAYLOAD, **overrides}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["config"]


@pytest.fixture()
def patched_smtp():
    with patch("mailportal.services.dispatch.smtplib.SMTP") as smtp_cls:
        server = MagicMock()
        server.has_extn.return_value = False
        smtp_cls.return_value = server
        yield server


def test_requires_authentication(client):
    assert client.get("/smtp/configs").status_code == 401
    assert client.get("/smtp/configs", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_create_and_list(client, auth_headers):
    created = _create(client, auth_headers)
    assert created["isDefault"] is True
    assert created["fromName"] == "Alice Example"

    response = client.get("/smtp/configs", headers=auth_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert [c["id"] for c in body["configs"]] == [created["id"]]


def test_secrets_never_in_output(client, auth_headers, db_session):
    created = _create(client, auth_headers)
    envelope = db_session.get(SmtpAccount, created["id"]).password_encrypted

    responses = [
        client.get("/smtp/configs", headers=auth_headers),
        client.get(f"/smtp/configs/{created['id']}", headers=auth_headers),
        client.put(f"/smtp/configs/{created['id']}", json={"name": "Renamed"}, headers=auth_headers),
        client.get("/smtp/config", headers=auth_headers),
    ]
    for response in responses:
        assert response.status_code == 200
        assert "super-secret-password" not in response.text
        assert envelope not in response.text
        assert "password" not in response.text.lower()


def test_missing_fields_rejected(client, auth_headers):
    response = client.post("/smtp/configs", json={"name": "Work"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Name, host, port, username, and password are required"


def test_invalid_port_rejected(client, auth_headers):
    response = client.post("/smtp/configs", json={**ACCOUNT_PAYLOAD, "port": 70000}, headers=auth_headers)
    assert response.status_code == 400


def test_set_default(client, auth_headers):
    a = _create(client, auth_headers, name="A")
    b = _create(client, auth_headers, name="B")

    response = client.post(f"/smtp/configs/{b['id']}/set-default", headers=auth_headers)
    assert response.status_code == 200

    configs = client.get("/smtp/configs", headers=auth_headers).json()["configs"]
    defaults = {c["id"]: c["isDefault"] for c in configs}
    assert defaults == {a["id"]: False, b["id"]: True}
    assert configs[0]["id"] == b["id"]


def test_delete_only_account_conflicts(client, auth_headers):
    only = _create(client, auth_headers)
    response = client.delete(f"/smtp/configs/{only['id']}", headers=auth_headers)
    assert response.status_code == 409
    assert response.json()["detail"] == "Cannot delete the only SMTP configuration"


def test_delete_default_promotes_oldest(client, auth_headers):
    a = _create(client, auth_headers, name="A")
    _create(client, auth_headers, name="B")
    c = _create(client, auth_headers, name="C", isDefault=True)

    assert client.delete(f"/smtp/configs/{c['id']}", headers=auth_headers).status_code == 200

    legacy = client.get("/smtp/config", headers=auth_headers).json()
    assert legacy["config"]["id"] == a["id"]


def test_foreign_account_is_not_found(client, auth_headers, other_user):
    theirs = _create(client, auth_headers_for(other_user))
    for method, path in [
        ("get", f"/smtp/configs/{theirs['id']}"),
        ("put", f"/smtp/configs/{theirs['id']}"),
        ("post", f"/smtp/configs/{theirs['id']}/set-default"),
        ("delete", f"/smtp/configs/{theirs['id']}"),
    ]:
        kwargs = {"json": {"name": "Mine now"}} if method == "put" else {}
        response = getattr(client, method)(path, headers=auth_headers, **kwargs)
        assert response.status_code == 404, (method, path)


def test_legacy_config_null_without_accounts(client, auth_headers):
    response = client.get("/smtp/config", headers=auth_headers)
    assert response.json() == {"success": True, "config": None}


def test_providers(client):
    providers = client.get("/smtp/providers").json()["providers"]
    assert [p["name"] for p in providers] == ["Gmail", "Outlook", "Yahoo", "SendGrid", "Mailgun"]


def test_inline_connection_test_auth_rejected(client, auth_headers, patched_smtp):
    patched_smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b"Bad credentials")

    response = client.post(
        "/smtp/test",
        json={"host": "smtp.example.com", "port": 587, "username": "alice@example.com", "password": "wrong"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["errorKind"] == "AuthenticationRejected"


def test_saved_connection_test_uses_decrypted_password(client, auth_headers, patched_smtp):
    created = _create(client, auth_headers)
    response = client.post(f"/smtp/configs/{created['id']}/test", headers=auth_headers)

    assert response.json()["success"] is True
    patched_smtp.login.assert_called_once_with("alice@example.com", "super-secret-password")


def test_corrupt_envelope_reports_crypto_error(client, auth_headers, db_session, patched_smtp):
    created = _create(client, auth_headers)
    account = db_session.get(SmtpAccount, created["id"])
    account.password_encrypted = "not-an-envelope"
    db_session.commit()

    response = client.post(f"/smtp/configs/{created['id']}/test", headers=auth_headers)

    assert response.status_code == 500
    assert response.json()["detail"] == "Stored credentials could not be decrypted"
    patched_smtp.login.assert_not_called()


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
