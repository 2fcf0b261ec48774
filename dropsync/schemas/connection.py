"""OAuth connect flow schemas."""

from __future__ import annotations

from dropsync.schemas.common import CamelModel


class AuthorizationResponse(CamelModel):
    authorization_url: str
