"""
Transport-level errors.

These are the errors completion listeners receive. They are never raised
at the code that registers a listener.

    TransportError          the stream or connection failed
    └── HTTPParseError      the peer sent bytes that are not valid HTTP
"""


class TransportError(OSError):
    """
    A genuine stream/connection failure: reset, broken pipe, malformed data.

    Connections wrap low-level OSErrors (ConnectionResetError, ...) in this
    type and keep the original as its __cause__.
    """


class HTTPParseError(TransportError):
    """
    Raised when the request head or body framing is malformed.

    Carries the HTTP status code the server answers with when it still can:

        400 Bad Request                  - Malformed syntax / chunk framing
        405 Method Not Allowed           - Unknown method
        413 Payload Too Large            - Body exceeds max_request_size
        431 Request Header Fields Too Large
        505 HTTP Version Not Supported
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        return self.args[0] if self.args else ""
