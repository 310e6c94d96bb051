"""Site-specific Playwright scrapers."""
from .listing_discovery import SPARROWBID, ListingSiteConfig, discover_listings
from .playwright_common import BrowserSession, NavigationError, launch_browser
from .reference_prices import GOOGLE_HOTELS, ReferencePriceResolver, ReferenceSiteConfig

__all__ = [
    "BrowserSession",
    "GOOGLE_HOTELS",
    "ListingSiteConfig",
    "NavigationError",
    "ReferencePriceResolver",
    "ReferenceSiteConfig",
    "SPARROWBID",
    "discover_listings",
    "launch_browser",
]
