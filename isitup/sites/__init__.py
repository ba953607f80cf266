from .registry import SiteRegistry
