"""Audiobook curator -- reconcile audiobook metadata and write it back into tags.

Modules:
    models       -- Records and enums (BookMetadata, BookGroup, BatchResult, ...)
    errors       -- CuratorError hierarchy and error categorization
    config       -- pydantic-settings configuration and loguru setup
    normalize    -- Text cleaning for titles, names, years, series, descriptions
    genres       -- Genre taxonomy and classification
    covers       -- Cover scoring and source-priority selection
    cache        -- Injected key/value cache (SQLite or in-memory)
    progress     -- Injected progress reporters
    concurrency  -- OnceSet and CancelToken
    collector    -- Folder walking and book grouping
    sidecar      -- metadata.json records beside each book
    ai           -- OpenAI-compatible title extraction and enhancement
    reconciler   -- Merge of tags, sources and AI into one record
    orchestrator -- Bounded worker pool for reconcile, write and rename batches
    renamer      -- Template-based file and folder renaming
    cli          -- click entry point
    api/         -- Audible, Google Books and cover art sources
    tagging/     -- Tag codecs, change detection, and writer
"""
