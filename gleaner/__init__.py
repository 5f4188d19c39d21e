"""
Browser-assisted crawl engine.

This package separates extraction (PageExtractor subclasses, pure functions
over rendered documents) from I/O (CrawlEngine, AdapterChain and the single
shared BrowserSession).
"""
