"""传输层证书信息读取。

证书链校验由传输层完成，这里只消费其结果：
1. ASGI 服务器提供 `tls` 扩展时，直接读取 client_cert_chain / client_cert_error。
2. 否则读取 TLS 终结代理（如 nginx）透传的证书与校验结果请求头。
"""

import base64
import binascii
from dataclasses import dataclass
from urllib.parse import unquote

from starlette.requests import Request

from certgate_api.core.config import Settings
from certgate_api.core.errors import InvalidInputError
from certgate_api.core.identity import is_pem, pem_to_der


@dataclass(frozen=True)
class PeerCertificate:
    """传输层交付的对端证书与链信任结论。"""

    # 客户端证书 DER 字节，连接上没有证书时为 None。
    der: bytes | None
    # 证书是否链到受信根。
    chain_trusted: bool
    # 链校验失败原因。
    chain_error: str | None = None


NO_CERTIFICATE = PeerCertificate(der=None, chain_trusted=False, chain_error="no client certificate")


def _decode_certificate_text(raw: str) -> bytes | None:
    """解析代理透传的证书文本，兼容转义 PEM 与裸 base64 DER。"""
    text = unquote(raw).strip()
    if not text:
        return None
    try:
        if is_pem(text):
            return pem_to_der(text)
        return base64.b64decode(text, validate=True) or None
    except (InvalidInputError, binascii.Error, ValueError):
        return None


def _from_tls_extension(tls: dict) -> PeerCertificate:
    chain = tls.get("client_cert_chain") or []
    if not chain:
        return NO_CERTIFICATE
    der = _decode_certificate_text(chain[0]) if isinstance(chain[0], str) else None
    error = tls.get("client_cert_error")
    return PeerCertificate(der=der, chain_trusted=error is None, chain_error=error)


def _from_proxy_headers(request: Request, settings: Settings) -> PeerCertificate:
    raw = request.headers.get(settings.client_cert_header)
    if not raw:
        return NO_CERTIFICATE
    der = _decode_certificate_text(raw)

    # nginx $ssl_client_verify 取值：SUCCESS / FAILED:<reason> / NONE。
    verdict = (request.headers.get(settings.client_verify_header) or "NONE").strip()
    if verdict.upper() == "SUCCESS":
        return PeerCertificate(der=der, chain_trusted=True)
    reason = verdict.split(":", 1)[1].strip() if ":" in verdict else verdict.lower()
    return PeerCertificate(der=der, chain_trusted=False, chain_error=reason or "unverified")


def read_peer_certificate(request: Request, settings: Settings) -> PeerCertificate:
    """读取当前请求对端证书。"""
    tls = (request.scope.get("extensions") or {}).get("tls")
    if isinstance(tls, dict):
        return _from_tls_extension(tls)
    if settings.trust_proxy_headers:
        return _from_proxy_headers(request, settings)
    return NO_CERTIFICATE
