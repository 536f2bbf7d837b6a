import pytest

from auth import authenticate, register_user
from errors import ValidationError


def test_register_and_authenticate(session_factory):
    user = register_user(" Bia@Example.com ", "hunter22", session_factory=session_factory)

    assert user.email == "bia@example.com"
    assert user.name == "bia"
    assert user.password_hash != "hunter22"
    assert authenticate("BIA@example.com", "hunter22", session_factory).id == user.id
    assert authenticate("bia@example.com", "wrong", session_factory) is None
    assert authenticate("nobody@example.com", "hunter22", session_factory) is None


def test_duplicate_email_is_rejected(session_factory, user):
    with pytest.raises(ValidationError):
        register_user(user.email, "another1", session_factory=session_factory)


@pytest.mark.parametrize("email,password", [("not-an-email", "secret123"), ("a@b.com", "123")])
def test_invalid_registration(session_factory, email, password):
    with pytest.raises(ValidationError):
        register_user(email, password, session_factory=session_factory)
