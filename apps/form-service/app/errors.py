class TreeMutationError(ValueError):
    """A store operation would break a tree invariant; the tree was left untouched."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class SchemaImportError(ValueError):
    """An imported schema is malformed and was not accepted into the store."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class TableFetchError(RuntimeError):
    pass
