from datetime import timedelta

import jwt
import pytest

from forum import config, errors
from forum.auth import create_access_token, email_from_token, verify_token


def test_token_carries_email():
    token = create_access_token({"email": "a@x.com"})

    assert email_from_token(token) == "a@x.com"


def test_expired_token_is_rejected():
    token = create_access_token({"email": "a@x.com"}, expires_delta=timedelta(seconds=-5))

    assert verify_token(token) is None
    with pytest.raises(errors.Unauthorized):
        email_from_token(token)


def test_token_signed_with_other_key_is_rejected():
    token = jwt.encode({"email": "a@x.com"}, "not-" + config.SECRET_KEY, algorithm=config.ALGORITHM)

    with pytest.raises(errors.Unauthorized):
        email_from_token(token)


def test_token_without_email_is_rejected():
    with pytest.raises(errors.Unauthorized):
        email_from_token(create_access_token({"sub": "someone"}))
    with pytest.raises(errors.Unauthorized):
        email_from_token(None)
