from typing import Generic, TypeVar, Optional, Any, Dict, Union
from http import HTTPStatus

T = TypeVar('T')  # Generic type variable

class Result(Generic[T]):
    """
    Outcome of a spreadsheet export operation.

    A Result holds either the produced payload (for example the workbook bytes)
    or an error message, together with the HTTP status the API layer should
    answer with. Pipeline code returns Results instead of raising so that the
    endpoints can turn any failure into the uniform error envelope.

    Attributes:
        success (bool): Indicates if the operation was successful
        data (Optional[T]): The payload (only present when success is True)
        error (Optional[str]): Error message (only present when success is False)
        status_code (HTTPStatus): HTTP status code (default: 200 for success, 500 for failure)
    """
    def __init__(
        self,
        success: bool,
        data: Optional[T] = None,
        error: Optional[str] = None,
        status_code: Optional[Union[int, HTTPStatus]] = None
    ):
        """
        Initialize a Result object.

        Args:
            success (bool): Whether the operation succeeded
            data (Optional[T], optional): Payload of a successful operation. Defaults to None.
            error (Optional[str], optional): Error message for a failed operation. Defaults to None.
            status_code (Optional[Union[int, HTTPStatus]], optional): HTTP status code.
                Defaults to 200 for success, 500 for failure.
        """
        self.success = success
        self.data = data
        self.error = error

        if status_code is None:
            self.status_code = HTTPStatus.OK if success else HTTPStatus.INTERNAL_SERVER_ERROR
        elif isinstance(status_code, HTTPStatus):
            self.status_code = status_code
        else:
            self.status_code = HTTPStatus(status_code)

    @classmethod
    def ok(cls, data: T, status_code: Optional[Union[int, HTTPStatus]] = HTTPStatus.OK) -> "Result[T]":
        """
        Create a successful Result with the provided payload.

        Args:
            data (T): The payload to be wrapped in the Result
            status_code (Optional[Union[int, HTTPStatus]], optional): HTTP status code. Defaults to 200 OK.

        Returns:
            Result[T]: A successful Result containing the payload
        """
        return cls(success=True, data=data, status_code=status_code)

    @classmethod
    def fail(cls, error: str, status_code: Optional[Union[int, HTTPStatus]] = HTTPStatus.INTERNAL_SERVER_ERROR) -> "Result[T]":
        """
        Create a failed Result with the provided error message.

        Args:
            error (str): The error message describing the failure
            status_code (Optional[Union[int, HTTPStatus]], optional): HTTP status code.
                Defaults to 500 INTERNAL_SERVER_ERROR.

        Returns:
            Result[T]: A failed Result containing the error message
        """
        return cls(success=False, error=error, status_code=status_code)

    @classmethod
    def invalid_input(cls, error: str = "Invalid request body") -> "Result[T]":
        """
        Create a failed Result for a request body that could not be decoded.

        Args:
            error (str, optional): The error message. Defaults to "Invalid request body".

        Returns:
            Result[T]: A failed Result with 422 status code
        """
        return cls(success=False, error=error, status_code=HTTPStatus.UNPROCESSABLE_ENTITY)

    @classmethod
    def payload_too_large(cls, limit_bytes: int) -> "Result[T]":
        """
        Create a failed Result for a request body above the configured size limit.

        Args:
            limit_bytes (int): The maximum accepted body size in bytes

        Returns:
            Result[T]: A failed Result with 413 status code
        """
        return cls(
            success=False,
            error=f"Request body exceeds the limit of {limit_bytes} bytes",
            status_code=HTTPStatus.REQUEST_ENTITY_TOO_LARGE
        )

    @classmethod
    def generation_failed(cls, error: str) -> "Result[T]":
        """
        Create a failed Result for an error raised while building the workbook.

        Args:
            error (str): The underlying error message

        Returns:
            Result[T]: A failed Result with 500 status code
        """
        return cls(success=False, error=error, status_code=HTTPStatus.INTERNAL_SERVER_ERROR)

    def is_success(self) -> bool:
        """Check if the Result represents a successful operation."""
        return self.success

    def is_failure(self) -> bool:
        """Check if the Result represents a failed operation."""
        return not self.success

    def to_error_envelope(self) -> Dict[str, Any]:
        """
        Render a failed Result as the API error body.

        Returns:
            Dict[str, Any]: ``{"success": False, "message": <error>}``
        """
        return {
            "success": False,
            "message": self.error or self.status_code.phrase
        }

    def __str__(self) -> str:
        status_info = f"{self.status_code.value} {self.status_code.phrase}"
        if self.is_success():
            data_repr = repr(self.data)
            # Workbook payloads are large, keep the representation short
            if len(data_repr) > 100:
                data_repr = f"{data_repr[:97]}..."
            return f"Success ({status_info}): {data_repr}"
        return f"Failure ({status_info}): {self.error}"

    def __repr__(self) -> str:
        return f"Result(success={self.success}, status_code={self.status_code!r}, error={self.error!r})"
