"""服务层能力导出集合。"""

from certgate_api.services.authorization import (
    TrustDecision,
    TrustState,
    evaluate_trust,
    is_enrollment_request,
    require_trust,
)
from certgate_api.services.info_patch import PatchMode, PatchOutcome, apply_info_patch, patch_mode_from_content_type
from certgate_api.services.memory_directory import InMemoryUserDirectory
from certgate_api.services.sql_directory import SqlAlchemyUserDirectory
from certgate_api.services.user_directory import (
    DuplicateKeyError,
    Resolution,
    ResolveStrategy,
    UserDirectory,
    UserRecord,
    normalize_aliases,
    prune_info,
)

__all__ = [
    "TrustState",
    "TrustDecision",
    "evaluate_trust",
    "is_enrollment_request",
    "require_trust",
    "PatchMode",
    "PatchOutcome",
    "apply_info_patch",
    "patch_mode_from_content_type",
    "UserDirectory",
    "UserRecord",
    "DuplicateKeyError",
    "Resolution",
    "ResolveStrategy",
    "normalize_aliases",
    "prune_info",
    "InMemoryUserDirectory",
    "SqlAlchemyUserDirectory",
]
