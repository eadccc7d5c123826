"""Shared plumbing for API resources."""

from typing import Any, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel

from core.errors import APIError
from core.logging import LoggedClass
from spooled.http.transport import Request, Transport

M = TypeVar("M", bound=BaseModel)


class BaseResource(LoggedClass):
    """
    Thin wrapper over a Transport.

    Resources build requests and decode responses; every retry, refresh
    and breaker decision stays in the transport.
    """

    def __init__(self, transport: Transport):
        self._transport = transport
        super().__init__()

    async def _call(
        self,
        method: str,
        path: str,
        body: Any = None,
        response_model: Optional[Type[M]] = None,
        idempotent: bool = False,
        timeout_seconds: Optional[float] = None,
    ) -> Any:
        response = await self._transport.execute(
            Request(
                method,
                path,
                body=body,
                idempotent=idempotent,
                timeout_seconds=timeout_seconds,
            )
        )
        if response_model is None:
            return response.json()
        try:
            return response_model.model_validate(response.json() or {})
        except (pydantic.ValidationError, ValueError) as e:
            raise APIError(
                f"invalid response from {method} {path}",
                status_code=response.status_code,
                code="invalid_response",
                request_id=response.request_id,
                raw_body=response.body,
                cause=e,
            ) from e
