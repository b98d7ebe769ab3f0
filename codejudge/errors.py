class JudgeError(Exception):
    """Base class for errors raised on the request path."""


class BadRequest(JudgeError):
    """Missing or malformed request fields."""


class UnsupportedLanguage(BadRequest):
    def __init__(self, language_id: str, supported=()):
        self.language_id = language_id
        self.supported = tuple(supported)
        message = f"Unsupported language: {language_id}"
        if self.supported:
            message += f". Supported languages: {', '.join(self.supported)}"
        super().__init__(message)
