"""LinkAuditor: async crawl engine for auditing a site's internal link structure."""

__version__ = "0.1.0"
