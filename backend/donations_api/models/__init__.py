from donations_api.models.case import Case
from donations_api.models.donation import Donation
from donations_api.models.provider_event import ProviderEvent

__all__ = [
    "Case",
    "Donation",
    "ProviderEvent",
]
