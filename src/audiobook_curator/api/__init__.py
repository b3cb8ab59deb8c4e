"""External metadata sources.

Submodules:
    audible      -- Audible catalog client (retailer source)
    google_books -- Google Books volumes client (catalog source)
    covers       -- Cover art lookups (iTunes, Audible, Open Library) and downloads
    search       -- Fuzzy scoring of search results
"""
