from . import catalog, dashboard, diamond_pricing, settings

__all__ = [
	"dashboard",
	"catalog",
	"diamond_pricing",
	"settings",
]
