#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

from __future__ import annotations

from typing import Optional

class DialError(Exception):
  """Base class for all error exceptions defined by this package."""
  pass

class DialRequestError(DialError):
  """Base class for errors raised while handling an inbound DIAL request. Each
     maps to the HTTP status code that is returned to the requester."""
  http_status: int = 500

class DialNotFoundError(DialRequestError):
  """The requested application (or device) is unknown."""
  http_status = 404

class PayloadTooLargeError(DialRequestError):
  """The request body exceeds the configured maximum content length."""
  http_status = 413

class HookFailureError(DialRequestError):
  """The app provider signaled an error while launching an application."""
  http_status = 503

class MethodNotAllowedError(DialRequestError):
  """A stop was attempted on an application that does not allow stop."""
  http_status = 405

class BadRequestError(DialRequestError):
  """A required correlation token (pid) was missing or did not match."""
  http_status = 400

class DialNotImplementedError(DialRequestError):
  """The endpoint is reserved by the protocol but not implemented."""
  http_status = 501

class HookCompletionError(DialError):
  """An app provider hook completion was signaled more than once."""
  pass

class TransportError(DialError):
  """A network-level failure occurred reaching a remote device."""
  pass

class RemoteProtocolError(DialError):
  """A remote device responded with an HTTP error status."""
  status: int

  def __init__(self, status: int, msg: Optional[str]=None):
    if msg is None:
      msg = f"Remote device responded with HTTP status {status}"
    super().__init__(msg)
    self.status = status

class DocumentParseError(DialError):
  """A device description or application description document is malformed."""
  pass
