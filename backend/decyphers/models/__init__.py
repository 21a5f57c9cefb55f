"""SQLAlchemy models for Decyphers.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from decyphers.models.affiliate_reward import AffiliateReward
from decyphers.models.affiliate_sale import AffiliateSale
from decyphers.models.analysis_history import AnalysisHistory
from decyphers.models.forex_news import ForexNews
from decyphers.models.plan import Plan
from decyphers.models.referral import Referral
from decyphers.models.referral_tier import ReferralTier
from decyphers.models.sales_milestone_tier import SalesMilestoneTier
from decyphers.models.schedule_task import ScheduleTask
from decyphers.models.smtp_configuration import SmtpConfiguration
from decyphers.models.subscription import Subscription
from decyphers.models.token_history import ManualTokenAddition, TokenHistory
from decyphers.models.user import User
from decyphers.models.verification import Verification

__all__ = [
    "AffiliateReward",
    "AffiliateSale",
    "AnalysisHistory",
    "ForexNews",
    "ManualTokenAddition",
    "Plan",
    "Referral",
    "ReferralTier",
    "SalesMilestoneTier",
    "ScheduleTask",
    "SmtpConfiguration",
    "Subscription",
    "TokenHistory",
    "User",
    "Verification",
]
