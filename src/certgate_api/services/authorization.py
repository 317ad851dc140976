"""证书链信任授权。

判定规则：
1. 传输层确认证书链到受信根：一律放行。
2. 未受信证书：仅允许 `POST /user(s)` 注册新身份（自签证书注册入口）。
3. 其余请求拒绝，返回 403。

网关不再自行校验证书，传输层结论是链有效性的唯一依据。
"""

from dataclasses import dataclass
from enum import StrEnum
import logging
import re

from certgate_api.core.errors import ForbiddenError

logger = logging.getLogger(__name__)

# 注册路由：/user 或 /users，大小写不敏感。
ENROLLMENT_PATH = re.compile(r"^/users?$", re.IGNORECASE)
FORBIDDEN_MESSAGE = "certificate not signed by this organization"


class TrustState(StrEnum):
    """单次请求的授权结论。"""

    AUTHORIZED = "authorized"
    DENIED = "denied"


@dataclass(frozen=True)
class TrustDecision:
    """授权结论与依据。"""

    state: TrustState
    # 是否经由未受信证书注册入口放行。
    via_enrollment: bool = False
    # 传输层给出的链校验失败原因。
    chain_error: str | None = None

    @property
    def authorized(self) -> bool:
        return self.state == TrustState.AUTHORIZED


def is_enrollment_request(method: str, path: str) -> bool:
    """判断是否为创建用户请求。"""
    route = path.split("?", 1)[0]
    return method.upper() == "POST" and ENROLLMENT_PATH.match(route) is not None


def evaluate_trust(
    *,
    chain_trusted: bool,
    method: str,
    path: str,
    chain_error: str | None = None,
) -> TrustDecision:
    """根据链信任结论与请求路由给出授权结论，无副作用。"""
    if chain_trusted:
        return TrustDecision(state=TrustState.AUTHORIZED)
    if is_enrollment_request(method, path):
        return TrustDecision(state=TrustState.AUTHORIZED, via_enrollment=True, chain_error=chain_error)
    return TrustDecision(state=TrustState.DENIED, chain_error=chain_error)


def require_trust(
    *,
    chain_trusted: bool,
    method: str,
    path: str,
    chain_error: str | None = None,
) -> TrustDecision:
    """授权失败时抛出 Forbidden。"""
    decision = evaluate_trust(chain_trusted=chain_trusted, method=method, path=path, chain_error=chain_error)
    if not decision.authorized:
        logger.debug("untrusted certificate denied method=%s path=%s error=%s", method, path, chain_error)
        raise ForbiddenError(FORBIDDEN_MESSAGE, extra={"chainError": chain_error} if chain_error else None)
    return decision
