import base64
import hashlib

import pytest

from certgate_api.core.errors import InvalidInputError
from certgate_api.core.identity import (
    certificate_to_base64,
    derive_user_id,
    is_pem,
    pem_to_der,
    user_id_from_certificate,
)

ALICE_DER = b"\x30\x82\x01\x0aalice-client-certificate"
BOB_DER = b"\x30\x82\x01\x0abob-client-certificate"


def _pem(der: bytes) -> str:
    body = base64.encodebytes(der).decode("ascii")
    return f"-----BEGIN CERTIFICATE-----\n{body}-----END CERTIFICATE-----\n"


def test_user_id_hashes_base64_text_of_der():
    cert_b64 = base64.b64encode(ALICE_DER).decode("ascii")

    user_id = derive_user_id(ALICE_DER)

    assert user_id == hashlib.sha256(cert_b64.encode("utf-8")).hexdigest()
    # 哈希对象是 base64 文本而不是原始字节。
    assert user_id != hashlib.sha256(ALICE_DER).hexdigest()
    assert len(user_id) == 64
    assert user_id == user_id.lower()


def test_user_id_is_deterministic_and_distinct_per_certificate():
    assert derive_user_id(ALICE_DER) == derive_user_id(bytearray(ALICE_DER))
    assert derive_user_id(ALICE_DER) != derive_user_id(BOB_DER)


def test_user_id_from_certificate_matches_der_derivation():
    cert_b64 = certificate_to_base64(ALICE_DER)
    assert user_id_from_certificate(cert_b64) == derive_user_id(ALICE_DER)


@pytest.mark.parametrize("der", [b"", None, "not-bytes"])
def test_certificate_to_base64_rejects_empty_input(der):
    with pytest.raises(InvalidInputError, match="Certificate must be non-empty binary data"):
        certificate_to_base64(der)


@pytest.mark.parametrize("cert_b64", ["", None])
def test_user_id_from_certificate_rejects_empty_text(cert_b64):
    with pytest.raises(InvalidInputError, match="Certificate must be a non-empty string"):
        user_id_from_certificate(cert_b64)


def test_pem_to_der_takes_leaf_certificate_of_chain():
    chain = _pem(ALICE_DER) + _pem(BOB_DER)

    assert is_pem(chain)
    assert pem_to_der(chain) == ALICE_DER


def test_pem_to_der_rejects_text_without_markers():
    assert not is_pem("MIIB")
    with pytest.raises(InvalidInputError):
        pem_to_der("MIIB")
