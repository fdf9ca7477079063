"""relaygraph.zaps

Lightning zaps: invoice acquisition, payment channels, settlement, totals.
"""

from .amounts import ZapTotals, extract_zap_amount, total_zaps
from .channels import (
    ChannelKind,
    ChannelOutcome,
    ExternalWalletChannel,
    InEnvironmentChannel,
    ManualChannel,
    PaymentSender,
)
from .lnurl import LnurlClient, PayParams, resolve_pay_url
from .settlement import ZapFailureReason, ZapSession, ZapSettlementEngine, ZapSnapshot, ZapTarget
from .state import ZapState

__all__ = [
    "ChannelKind",
    "ChannelOutcome",
    "ExternalWalletChannel",
    "InEnvironmentChannel",
    "LnurlClient",
    "ManualChannel",
    "PayParams",
    "PaymentSender",
    "ZapFailureReason",
    "ZapSession",
    "ZapSettlementEngine",
    "ZapSnapshot",
    "ZapState",
    "ZapTarget",
    "ZapTotals",
    "extract_zap_amount",
    "resolve_pay_url",
    "total_zaps",
]
