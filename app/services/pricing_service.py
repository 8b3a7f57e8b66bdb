class PricingService:
    SERVICE_PRICES_CENTS = {
        "skincare": 1800,
        "makeup": 1200,
        "esthetics": 1200,
        "cleaning": 1000,
        "bodywork": 1500,
        "beauty": 1200,
        "massage": 1500,
    }
    DEFAULT_PRICE_CENTS = 2000  # $20

    @classmethod
    def price_for(cls, service_type: str | None) -> int:
        if not service_type:
            return cls.DEFAULT_PRICE_CENTS
        return cls.SERVICE_PRICES_CENTS.get(service_type.strip().lower(), cls.DEFAULT_PRICE_CENTS)

    @classmethod
    def format_price(cls, cents: int | None) -> str:
        value = (cents if cents is not None else cls.DEFAULT_PRICE_CENTS) / 100
        return f"${value:.2f}"
