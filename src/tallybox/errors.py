class ContestError(Exception):
    """Base class for failures reported to the caller of a contest operation."""

    kind = "contest_error"

    def to_dict(self) -> dict:
        return {"detail": str(self), "error": self.kind}


class NotFound(ContestError):
    kind = "not_found"

    def __init__(self, contest_id: str):
        super().__init__(f"No such contest: {contest_id}")
        self.contest_id = contest_id


class UnexpectedChunk(ContestError):
    kind = "unexpected_chunk"

    def __init__(self, contest_id: str, received: int, expected: int):
        super().__init__(f"Sent chunk {received}, expecting {expected}")
        self.contest_id = contest_id
        self.received = received
        self.expected = expected

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["received"] = self.received
        data["expected"] = self.expected
        return data


class StorageError(ContestError):
    kind = "storage_error"


class ProcessingError(ContestError):
    kind = "processing_error"

    def __init__(self, message: str, stderr: str | None = None):
        super().__init__(message)
        self.stderr = stderr

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.stderr:
            data["stderr"] = self.stderr
        return data
