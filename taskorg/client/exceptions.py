class ClientError(Exception):
    """A failure the board client reports to the user."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ApiError(ClientError):
    """The server answered with an error status, or could not be reached (status 0)."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status

    @property
    def unauthorized(self) -> bool:
        return self.status == 401
