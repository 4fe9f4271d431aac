"""
Indexing and query core.

This package provides:
- schema: IndexSpec registry and per-field IndexConfig
- analyzers: term normalization and n-gram generation
- stores: key-value store protocol plus memory and SQLite adapters
- router: field -> store routing and per-store batching
- dictionary: term -> compact id mapping
- postings / summaries: the inverted index and per-document bookkeeping
- query: free-text and per-field boolean queries
- engine: the SearchEngine facade
"""
