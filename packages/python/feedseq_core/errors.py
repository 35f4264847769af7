class SequencingError(ValueError):
    code: str = "sequencing_error"

    def __init__(self, message: str = "", *, code: str | None = None):
        super().__init__(message or self.__class__.__name__)
        if code: self.code = code

class InvalidCountError(SequencingError):
    code = "invalid_count"

class NegativeWeightError(SequencingError):
    code = "negative_weight"

class ViewerStateError(SequencingError):
    code = "invalid_state"
