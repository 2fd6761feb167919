# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exception taxonomy for the email RPC layer.

Only real failures are raised. Expected races on the transport (duplicate
deliveries, replies for already-resolved requests, replies arriving before
their request) are reported as typed results by the controller instead.
"""

from __future__ import annotations


class MailRpcError(RuntimeError):
    """Base class for RPC failures, carrying a machine readable ``code``."""

    code = "mail_rpc_error"

    def __init__(self, message: str = "", *, request_id: str | None = None):
        super().__init__(message or self.code)
        self.request_id = request_id


class RequestTimeoutError(MailRpcError):
    """Raised when no reply is matched before the request timer fires."""

    code = "request_timeout"


class TransportError(MailRpcError):
    """Raised when composing or sending the request email fails."""

    code = "transport_error"


class InvalidResponseError(MailRpcError):
    """Raised when a request is resolved with an empty or undecodable reply."""

    code = "invalid_response"


class AlreadyResolvedError(MailRpcError):
    """Raised when a request that already settled is resolved again."""

    code = "already_resolved"


class DuplicateRequestError(MailRpcError):
    """Raised when a correlation id is already pending or already resolved."""

    code = "duplicate_request"


class AccountNotFoundError(MailRpcError):
    """Raised when ``send_request`` names an unknown account."""

    code = "account_not_found"


class ControllerStoppedError(MailRpcError):
    """Raised for requests still pending when the controller shuts down."""

    code = "controller_stopped"


class HTTPRequestError(MailRpcError):
    """Raised when the side-channel HTTP endpoint answers with an error."""

    code = "http_request_failed"

    def __init__(self, message: str = "", *, status: int | None = None, request_id: str | None = None):
        super().__init__(message, request_id=request_id)
        self.status = status


class ConfigReadbackError(MailRpcError):
    """Raised when a config write cannot be read back from storage."""

    code = "config_readback_failed"


class ConfigKeyError(KeyError):
    """Raised when a config namespace is accessed with an unregistered key."""


__all__ = [
    "AccountNotFoundError",
    "AlreadyResolvedError",
    "ConfigKeyError",
    "ConfigReadbackError",
    "ControllerStoppedError",
    "DuplicateRequestError",
    "HTTPRequestError",
    "InvalidResponseError",
    "MailRpcError",
    "RequestTimeoutError",
    "TransportError",
]
