import base64
from urllib.parse import quote

from starlette.requests import Request

from certgate_api.core.config import Settings
from certgate_api.core.transport import NO_CERTIFICATE, read_peer_certificate

CLIENT_DER = b"\x30\x82\x01\x0aproxy-client-certificate"


def _pem(der: bytes) -> str:
    body = base64.encodebytes(der).decode("ascii")
    return f"-----BEGIN CERTIFICATE-----\n{body}-----END CERTIFICATE-----\n"



def _behind_proxy(**overrides) -> Settings:
    """TLS 由代理终结、代理覆盖证书请求头的部署。"""
    return Settings(trust_proxy_headers=True, **overrides)


def _request(headers: dict[str, str] | None = None, tls: dict | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/users/info",
        "query_string": b"",
        "headers": [(key.lower().encode("latin-1"), value.encode("latin-1")) for key, value in (headers or {}).items()],
    }
    if tls is not None:
        scope["extensions"] = {"tls": tls}
    return Request(scope)


def test_tls_extension_with_verified_chain():
    peer = read_peer_certificate(
        _request(tls={"client_cert_chain": [_pem(CLIENT_DER)], "client_cert_error": None}),
        _behind_proxy(),
    )

    assert peer.der == CLIENT_DER
    assert peer.chain_trusted
    assert peer.chain_error is None


def test_tls_extension_with_chain_error():
    peer = read_peer_certificate(
        _request(tls={"client_cert_chain": [_pem(CLIENT_DER)], "client_cert_error": "unable to get local issuer"}),
        _behind_proxy(),
    )

    assert peer.der == CLIENT_DER
    assert not peer.chain_trusted
    assert peer.chain_error == "unable to get local issuer"


def test_tls_extension_takes_precedence_over_proxy_headers():
    peer = read_peer_certificate(
        _request(
            headers={"X-SSL-Client-Cert": quote(_pem(b"other")), "X-SSL-Client-Verify": "SUCCESS"},
            tls={"client_cert_chain": []},
        ),
        _behind_proxy(),
    )
    assert peer == NO_CERTIFICATE


def test_proxy_headers_with_escaped_pem():
    peer = read_peer_certificate(
        _request(headers={"X-SSL-Client-Cert": quote(_pem(CLIENT_DER)), "X-SSL-Client-Verify": "SUCCESS"}),
        _behind_proxy(),
    )

    assert peer.der == CLIENT_DER
    assert peer.chain_trusted


def test_proxy_headers_with_base64_der_and_failed_verification():
    peer = read_peer_certificate(
        _request(
            headers={
                "X-SSL-Client-Cert": base64.b64encode(CLIENT_DER).decode("ascii"),
                "X-SSL-Client-Verify": "FAILED:self signed certificate",
            }
        ),
        _behind_proxy(),
    )

    assert peer.der == CLIENT_DER
    assert not peer.chain_trusted
    assert peer.chain_error == "self signed certificate"


def test_proxy_headers_without_verdict_are_untrusted():
    peer = read_peer_certificate(
        _request(headers={"X-SSL-Client-Cert": quote(_pem(CLIENT_DER))}),
        _behind_proxy(),
    )

    assert peer.der == CLIENT_DER
    assert not peer.chain_trusted
    assert peer.chain_error == "none"


def test_undecodable_certificate_header_yields_no_der():
    peer = read_peer_certificate(
        _request(headers={"X-SSL-Client-Cert": "not base64 !!", "X-SSL-Client-Verify": "SUCCESS"}),
        _behind_proxy(),
    )
    assert peer.der is None


def test_proxy_headers_ignored_when_not_trusted():
    peer = read_peer_certificate(
        _request(headers={"X-SSL-Client-Cert": quote(_pem(CLIENT_DER)), "X-SSL-Client-Verify": "SUCCESS"}),
        Settings(trust_proxy_headers=False),
    )
    assert peer == NO_CERTIFICATE


def test_custom_header_names():
    peer = read_peer_certificate(
        _request(headers={"X-Client-Cert": quote(_pem(CLIENT_DER)), "X-Client-Verify": "SUCCESS"}),
        _behind_proxy(client_cert_header="X-Client-Cert", client_verify_header="X-Client-Verify"),
    )
    assert peer.chain_trusted
    assert peer.der == CLIENT_DER


def test_proxy_headers_ignored_by_default():
    # 直连部署下客户端可以伪造校验结果请求头。
    peer = read_peer_certificate(
        _request(headers={"X-SSL-Client-Cert": quote(_pem(CLIENT_DER)), "X-SSL-Client-Verify": "SUCCESS"}),
        Settings(),
    )

    assert Settings().trust_proxy_headers is False
    assert peer == NO_CERTIFICATE
