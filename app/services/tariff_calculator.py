"""Converts a tariff's base amount into the charge for one term."""

from decimal import Decimal

from app.config import settings
from app.models.academic import Term
from app.models.billing import Tariff
from app.models.enums import BillingFrequency
from app.utils.money import round_money


class TariffCalculator:
    @staticmethod
    def charge_for(tariff: Tariff, term: Term) -> Decimal:
        """
        Per-term charge for a tariff:
        - per_term / one_time: the amount unchanged
        - per_month: amount x calendar months the term touches (min 1)
        - per_year: amount split evenly across TERMS_PER_YEAR terms
        Rounded half up to cents.
        """
        amount = Decimal(tariff.amount)
        frequency = BillingFrequency(tariff.billing_frequency)

        if frequency == BillingFrequency.PER_MONTH:
            return round_money(amount * term.month_span)
        if frequency == BillingFrequency.PER_YEAR:
            return round_money(amount / settings.TERMS_PER_YEAR)
        return round_money(amount)
