"""Live jewellery pricing for the Glimmr storefront."""

__version__ = "0.1.0"
