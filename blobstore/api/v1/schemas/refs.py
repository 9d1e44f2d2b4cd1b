"""Pydantic schemas for ref API endpoints."""

from __future__ import annotations

from pydantic import BaseModel


class LinkBaseOut(BaseModel):
    """Base URL under which stored refs are reachable."""

    backend: str
    link_base: str


class ReadyOut(BaseModel):
    """Readiness report of the store server."""

    status: str
    backend: str | None = None
    detail: str | None = None
