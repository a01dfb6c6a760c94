"""Domain services for appdoki.

Services in this package:
- UserDirectory: find-or-create resolution of external identities to local users
- AuthFlowController: authorization-code login flow orchestration
"""

from appdoki.domain.services.auth_flow import AuthFlowController, CallbackResult, LoginStart
from appdoki.domain.services.user import UserDirectory

__all__ = [
    "AuthFlowController",
    "CallbackResult",
    "LoginStart",
    "UserDirectory",
]
