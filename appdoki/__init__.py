"""appdoki - OIDC login and identity resolution service.

Authenticates users through an external identity provider (OAuth 2.0
authorization-code flow plus OpenID Connect identity tokens), maps them onto
local user records and gates the API behind bearer credentials.
"""

__version__ = "0.1.0"

from appdoki.config import Settings, load_settings_from_file

__all__ = [
    "Settings",
    "__version__",
    "load_settings_from_file",
]
