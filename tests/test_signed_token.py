import pytest

from sso import signed_token


def test_signed_session_id_round_trip() -> None:
    key = signed_token.derive_key("secret")

    cookie = signed_token.sign_session_id("abc", key)

    assert cookie.startswith("abc.")
    assert signed_token.unsign_session_id(cookie, key) == "abc"


def test_cookie_signed_with_other_secret_is_rejected() -> None:
    cookie = signed_token.sign_session_id("abc", signed_token.derive_key("secret"))

    with pytest.raises(signed_token.BadSignature, match="does not match"):
        signed_token.unsign_session_id(cookie, signed_token.derive_key("other"))


def test_swapped_session_id_is_rejected() -> None:
    key = signed_token.derive_key("secret")
    signature = signed_token.sign_session_id("abc", key).rpartition(".")[2]

    with pytest.raises(signed_token.BadSignature):
        signed_token.unsign_session_id(f"victim.{signature}", key)


@pytest.mark.parametrize("value", ["no-dot-here", ".onlysignature", "abc.sïgnature"])
def test_malformed_cookie_is_rejected(value) -> None:
    with pytest.raises(signed_token.BadSignature):
        signed_token.unsign_session_id(value, signed_token.derive_key("secret"))
