"""relaygraph.security

Signing capability and outbound URL guard.
"""

from .signer import Signer
from .ssrf import PayUrlPolicy, UrlCheck, check_url

__all__ = ["PayUrlPolicy", "Signer", "UrlCheck", "check_url"]
