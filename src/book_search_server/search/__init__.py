"""
Indexing and query engine building blocks.

- tokenizer: text normalization into the searchable vocabulary
- metadata: header parsing into book metadata
- storage: backend contract and the key-value backend
- sqlite_storage: relational backend with a bounded connection pool
- storage_factory: backend selection from settings
"""
