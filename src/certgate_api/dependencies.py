"""请求上下文依赖。

职责:
1. 从传输层读取客户端证书与链信任结论。
2. 由证书派生用户 ID（失败即 401，先于授权执行）。
3. 按链信任结论做授权判定（未受信证书仅可注册）。
4. 生成后续路由统一使用的 RequestContext。
"""

from dataclasses import dataclass

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from certgate_api.core.config import get_settings
from certgate_api.core.errors import InvalidInputError, UnauthenticatedError
from certgate_api.core.identity import certificate_to_base64, user_id_from_certificate
from certgate_api.core.transport import PeerCertificate, read_peer_certificate
from certgate_api.db.session import get_db
from certgate_api.services.authorization import require_trust
from certgate_api.services.info_patch import PatchMode, patch_mode_from_content_type
from certgate_api.services.sql_directory import SqlAlchemyUserDirectory
from certgate_api.services.user_directory import UserDirectory

UNAUTHENTICATED_MESSAGE = "could not extract certificate from request"


@dataclass
class CertificateIdentity:
    """由客户端证书派生的身份。"""

    # 证书派生用户 ID。
    user_id: str
    # 证书 DER 的 base64 文本。
    cert_b64: str
    # 传输层链信任结论。
    chain_trusted: bool
    chain_error: str | None = None


@dataclass
class RequestContext:
    """请求上下文。

    该对象在路由层作为统一输入，路由不再直接接触传输层细节。
    """

    user_id: str
    cert_b64: str
    chain_trusted: bool
    # 是否经由未受信证书注册入口放行。
    via_enrollment: bool = False


def get_peer_certificate(request: Request) -> PeerCertificate:
    """读取当前连接对端证书。"""
    return read_peer_certificate(request, get_settings())


def get_certificate_identity(peer: PeerCertificate = Depends(get_peer_certificate)) -> CertificateIdentity:
    """提取证书并派生用户 ID，失败返回 401。"""
    try:
        cert_b64 = certificate_to_base64(peer.der)
        user_id = user_id_from_certificate(cert_b64)
    except InvalidInputError as exc:
        raise UnauthenticatedError(UNAUTHENTICATED_MESSAGE) from exc
    return CertificateIdentity(
        user_id=user_id,
        cert_b64=cert_b64,
        chain_trusted=peer.chain_trusted,
        chain_error=peer.chain_error,
    )


def _route_path(request: Request) -> str:
    """返回去掉统一前缀后的路由路径。"""
    path = request.url.path
    prefix = get_settings().api_prefix
    if prefix and path.lower().startswith(prefix.lower()):
        path = path[len(prefix) :] or "/"
    return path


def get_request_context(
    request: Request,
    identity: CertificateIdentity = Depends(get_certificate_identity),
) -> RequestContext:
    """在身份已解析的前提下完成链信任授权。"""
    decision = require_trust(
        chain_trusted=identity.chain_trusted,
        method=request.method,
        path=_route_path(request),
        chain_error=identity.chain_error,
    )
    return RequestContext(
        user_id=identity.user_id,
        cert_b64=identity.cert_b64,
        chain_trusted=identity.chain_trusted,
        via_enrollment=decision.via_enrollment,
    )


def get_user_directory(db: Session = Depends(get_db)) -> UserDirectory:
    """为当前请求构造用户目录。"""
    return SqlAlchemyUserDirectory(db, patch_max_attempts=get_settings().patch_max_attempts)


def get_patch_mode(content_type: str | None = Header(default=None)) -> PatchMode:
    """按 Content-Type 请求头选择补丁方式。"""
    return patch_mode_from_content_type(content_type)
