class IndexerError(Exception):
    """Base for failures that abort a pipeline tick."""


class FetchError(IndexerError):
    """A range could not be fetched: its first block or its log query never succeeded."""


class PersistenceError(IndexerError):
    """A range commit was rolled back."""
