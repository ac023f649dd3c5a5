from abc import ABC, abstractmethod


class MetalRateProvider(ABC):
    provider_name: str

    @abstractmethod
    def fetch_latest_inr_per_gram(self, symbols: list[str]) -> dict[str, float]:
        """Returns {symbol: price_inr_per_gram} for the symbols the provider has."""
        raise NotImplementedError
