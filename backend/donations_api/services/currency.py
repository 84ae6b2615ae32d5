"""Exchange rates and IP-based currency detection."""

import logging
import time
from decimal import Decimal

import httpx

from donations_api.core.config import settings
from donations_api.core.exceptions import ProviderUnavailableError, ValidationError
from donations_api.services.fees import round_money

logger = logging.getLogger(__name__)


def convert(
    amount: Decimal,
    from_currency: str,
    to_currency: str,
    rates: dict[str, Decimal],
) -> Decimal:
    """Convert through the rate table's base currency; rounds half-up to cents."""
    from_currency, to_currency = from_currency.upper(), to_currency.upper()
    if from_currency == to_currency:
        return round_money(Decimal(amount))
    try:
        from_rate = Decimal(str(rates[from_currency]))
        to_rate = Decimal(str(rates[to_currency]))
    except KeyError as exc:
        raise ValidationError(f"No exchange rate for {exc.args[0]}") from exc
    if from_rate <= 0:
        raise ValidationError(f"Invalid exchange rate for {from_currency}")
    return round_money(Decimal(amount) / from_rate * to_rate)


class CurrencyService:
    """Caches the exchange-rate table for EXCHANGE_RATE_TTL_SECONDS.

    A failed refresh keeps serving the previous table; only a cold cache turns
    an upstream failure into ProviderUnavailableError.
    """

    def __init__(
        self,
        rate_url: str | None = None,
        geoip_url: str | None = None,
        ttl_seconds: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rate_url = rate_url or settings.EXCHANGE_RATE_URL
        self.geoip_url = geoip_url or settings.GEOIP_URL
        self.ttl_seconds = (
            ttl_seconds if ttl_seconds is not None else settings.EXCHANGE_RATE_TTL_SECONDS
        )
        self._transport = transport
        self._base: str = "USD"
        self._rates: dict[str, Decimal] | None = None
        self._fetched_at: float = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def _fetch_rates(self) -> dict[str, Decimal]:
        async with self._client() as client:
            resp = await client.get(self.rate_url)
            resp.raise_for_status()
        data = resp.json()
        raw = data.get("rates")
        if not isinstance(raw, dict) or not raw:
            raise ValueError("exchange-rate response has no rates")
        self._base = str(data.get("base_code") or data.get("base") or "USD").upper()
        self._rates = {code.upper(): Decimal(str(rate)) for code, rate in raw.items()}
        self._fetched_at = time.time()
        return self._rates

    async def get_rates(self) -> tuple[str, dict[str, Decimal]]:
        if self._rates is not None and (time.time() - self._fetched_at) <= self.ttl_seconds:
            return self._base, self._rates
        try:
            rates = await self._fetch_rates()
        except (httpx.HTTPError, ValueError) as exc:
            if self._rates is not None:
                logger.warning("Exchange-rate refresh failed, serving cached rates: %s", exc)
                return self._base, self._rates
            raise ProviderUnavailableError(f"Exchange rates unavailable: {exc}") from exc
        return self._base, rates

    async def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        if from_currency.upper() == to_currency.upper():
            return round_money(Decimal(amount))
        _, rates = await self.get_rates()
        return convert(amount, from_currency, to_currency, rates)

    async def currency_for_ip(self, ip: str | None) -> str:
        """Currency of the caller's country; DEFAULT_CURRENCY on any failure."""
        default = settings.DEFAULT_CURRENCY.upper()
        if not ip:
            return default
        try:
            async with self._client() as client:
                resp = await client.get(self.geoip_url.format(ip=ip))
                resp.raise_for_status()
            currency = resp.json().get("currency")
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            logger.info("Geo-IP lookup for %s failed: %s", ip, exc)
            return default
        if not isinstance(currency, str) or currency.upper() not in settings.supported_currencies:
            return default
        return currency.upper()
