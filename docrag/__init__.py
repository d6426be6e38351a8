"""docrag -- document ingestion and retrieval for grounded generation.

Uploads are registered, written once to an object store, extracted to plain
text, split into overlapping chunks, embedded in bounded batches and written
to a vector index.  Queries rank chunks across one owner's documents by
vector similarity, with a keyword fallback over raw extracted text for
documents that have no vectors.
"""

__version__ = "0.1.0"
