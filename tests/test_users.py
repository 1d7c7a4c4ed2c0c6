import pytest
from sqlalchemy import select, update

from database import users
from errors import ConflictError, EmailSendError, InvalidCredentials, UserExists, UserNotFound, ValidationError
from schemas import RegisterRequest
from users import hash_password


def test_register_hashes_password(app):
    created = app.state.users.register(RegisterRequest(email="a@example.com", password="hunter22", name="Ann"))
    assert created.username == "Ann"
    with app.state.db.transaction() as c:
        stored = c.execute(select(users.c.password_hash).where(users.c.id == created.id)).scalar_one()
    assert stored != "hunter22"
    assert stored.startswith("$2")


def test_register_duplicate_email(app, user):
    with pytest.raises(UserExists) as excinfo:
        app.state.users.register(RegisterRequest(email="jane@example.com", password="secret123", name="Other"))
    assert excinfo.value.message == "Email already registered"


def test_register_duplicate_username(app, user):
    with pytest.raises(UserExists) as excinfo:
        app.state.users.register(
            RegisterRequest(email="new@example.com", password="secret123", name="Other", username="jane")
        )
    assert excinfo.value.message == "Username already taken"


def test_register_short_password(app):
    with pytest.raises(ValidationError):
        app.state.users.register(RegisterRequest(email="b@example.com", password="123", name="Bo"))


def test_login(app, user):
    auth = app.state.users.login("jane@example.com", "secret123")
    assert auth.id == user.id
    assert auth.token.startswith(f"tok_{user.id}_")


@pytest.mark.parametrize("email, password", [("jane@example.com", "wrong-pass"), ("nobody@example.com", "secret123")])
def test_login_invalid_credentials(app, user, email, password):
    with pytest.raises(InvalidCredentials):
        app.state.users.login(email, password)


def test_find_email_and_name(app, user):
    contact = app.state.users.find_email_and_name(user.id)
    assert (contact.email, contact.name) == ("jane@example.com", "jane doe")
    with pytest.raises(UserNotFound):
        app.state.users.find_email_and_name(999)


def test_reset_password_emails_new_password(app, user, notifier):
    app.state.users.reset_password("jane@example.com")

    assert len(notifier.password_resets) == 1
    new_password = notifier.password_resets[0]["password"]
    assert app.state.users.login("jane@example.com", new_password).id == user.id
    with pytest.raises(InvalidCredentials):
        app.state.users.login("jane@example.com", "secret123")


def test_reset_password_keeps_old_password_when_email_fails(app, user, notifier):
    notifier.fail = True
    with pytest.raises(EmailSendError):
        app.state.users.reset_password("jane@example.com")
    assert app.state.users.login("jane@example.com", "secret123").id == user.id



def test_reset_password_writes_nothing_before_the_email_is_sent(app, user, notifier, monkeypatch):
    seen = []
    send = notifier.send_password_reset

    def checking_send(to_email, name, new_password):
        # other writers are not blocked and the old password still works
        app.state.users.register(RegisterRequest(email="ann@example.com", password="secret123", name="ann"))
        seen.append(app.state.users.login("jane@example.com", "secret123").id)
        send(to_email, name, new_password)

    monkeypatch.setattr(notifier, "send_password_reset", checking_send)
    app.state.users.reset_password("jane@example.com", new_password="fresh-pass")

    assert seen == [user.id]
    assert app.state.users.login("jane@example.com", "fresh-pass").id == user.id


def test_reset_password_does_not_override_a_concurrent_change(app, user, notifier, monkeypatch):
    send = notifier.send_password_reset

    def racing_send(to_email, name, new_password):
        with app.state.db.transaction() as c:
            c.execute(update(users).where(users.c.id == user.id).values(password_hash=hash_password("changed!")))
        send(to_email, name, new_password)

    monkeypatch.setattr(notifier, "send_password_reset", racing_send)
    with pytest.raises(ConflictError):
        app.state.users.reset_password("jane@example.com", new_password="fresh-pass")

    assert app.state.users.login("jane@example.com", "changed!").id == user.id


def test_reset_password_unknown_email(app):
    with pytest.raises(UserNotFound):
        app.state.users.reset_password("ghost@example.com")
