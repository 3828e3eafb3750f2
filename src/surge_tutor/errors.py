"""Exception types raised by the tutor."""


class TutorError(Exception):
    """Base class for errors surfaced to the user."""


class ConfigError(TutorError):
    pass


class ValidationError(TutorError):
    """A request was missing required fields."""


class LLMError(TutorError):
    """The model provider failed or returned nothing usable."""


class QuizGenerationError(LLMError):
    def __init__(self, detail: str = "Empty quiz payload"):
        super().__init__(detail)
        self.detail = detail
        self.user_message = "Chad couldn't generate the quiz. Try again?"


class StorageQuotaError(TutorError):
    def __init__(self, key: str, size: int, limit: int):
        super().__init__(f"Document {key} is {size} bytes, over the {limit} byte limit")
        self.key = key
        self.size = size
        self.limit = limit
