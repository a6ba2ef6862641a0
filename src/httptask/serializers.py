"""
Response serializers for httptask.

A serializer validates a response (status, and for JSON the body
format) and decodes the body into a generic value. Validation is the
authority on whether a request succeeded; decoding is best-effort.
"""

import json
import logging
from abc import ABC, abstractmethod
from http import HTTPStatus
from typing import Any, Optional

from .exceptions import HttpStatusError, ParseError
from .http_primitives import Response

logger = logging.getLogger(__name__)


def status_phrase(status_code: int) -> str:
    """Human readable phrase for a status code."""
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Unknown Status"


class ResponseSerializer(ABC):
    """Interface shared by all response serializers."""

    def validate_status(self, status_code: int, body: bytes, response: Optional[Response] = None) -> None:
        """
        Check the response status.

        Raises:
            HttpStatusError: Unless 200 <= status_code < 300
        """
        if not 200 <= status_code < 300:
            raise HttpStatusError(
                status_code,
                status_phrase(status_code),
                response=response,
                body=body,
            )

    def validate(self, status_code: int, body: bytes, response: Optional[Response] = None) -> None:
        """Validate a response; subclasses add body checks."""
        self.validate_status(status_code, body, response)

    @abstractmethod
    def decode(self, body: bytes) -> Any:
        """Decode the body into a value."""
        pass

    def deserialize(self, status_code: int, body: bytes, response: Optional[Response] = None) -> Any:
        """Validate then decode; raises the validation error if any."""
        self.validate(status_code, body, response)
        return self.decode(body)


class StringResponseSerializer(ResponseSerializer):
    """Decodes bodies as UTF-8 text."""

    def decode(self, body: bytes) -> str:
        return body.decode("utf-8", errors="replace")


class JsonResponseSerializer(ResponseSerializer):
    """
    Decodes bodies as JSON documents.

    An empty body (HEAD, 204 No Content) is valid and decodes to None.
    """

    def validate(self, status_code: int, body: bytes, response: Optional[Response] = None) -> None:
        self.validate_status(status_code, body, response)

        if not body.strip():
            return

        try:
            json.loads(body)
        except (ValueError, RecursionError) as e:
            raise ParseError("Invalid response received, can't parse JSON", response=response, cause=e) from e

    def decode(self, body: bytes) -> Any:
        if not body.strip():
            return None
        try:
            return json.loads(body)
        except (ValueError, RecursionError):
            logger.debug(f"Could not decode {len(body)} bytes as JSON")
            return None
