"""证书身份推导。

用户 ID = SHA-256(UTF-8(base64(证书 DER))) 的小写十六进制。
注意哈希的是 base64 文本而不是原始字节，改动会导致与已有 ID 空间不兼容。
"""

import base64
import binascii
import hashlib
import ssl

from certgate_api.core.errors import InvalidInputError

PEM_MARKER = "-----BEGIN CERTIFICATE-----"
PEM_END_MARKER = "-----END CERTIFICATE-----"


def certificate_to_base64(der: bytes | None) -> str:
    """将证书 DER 字节编码为 base64 文本。"""
    if not isinstance(der, (bytes, bytearray, memoryview)) or len(der) < 1:
        raise InvalidInputError("Certificate must be non-empty binary data")
    return base64.b64encode(bytes(der)).decode("ascii")


def user_id_from_certificate(cert_b64: str | None) -> str:
    """由 base64 证书文本计算用户 ID。"""
    if not isinstance(cert_b64, str) or len(cert_b64) < 1:
        raise InvalidInputError("Certificate must be a non-empty string")
    return hashlib.sha256(cert_b64.encode("utf-8")).hexdigest()


def derive_user_id(der: bytes | None) -> str:
    """由原始证书 DER 字节计算用户 ID。"""
    return user_id_from_certificate(certificate_to_base64(der))


def is_pem(text: str) -> bool:
    return PEM_MARKER in text


def pem_to_der(pem: str) -> bytes:
    """将单个 PEM 证书转为 DER 字节，仅剥离封装，不校验证书结构。"""
    start = pem.find(PEM_MARKER)
    end = pem.find(PEM_END_MARKER, start)
    if start < 0 or end < 0:
        raise InvalidInputError("Certificate is not PEM encoded")
    # 证书链场景只取第一张（叶子）证书。
    try:
        return ssl.PEM_cert_to_DER_cert(pem[start : end + len(PEM_END_MARKER)])
    except (ValueError, binascii.Error) as exc:
        raise InvalidInputError("Certificate is not valid PEM") from exc
