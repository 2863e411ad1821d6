"""Langfuse tracing for voice turns.

When the Langfuse keys are not configured every helper is a no-op, so the
pipeline runs the same with or without observability.

One trace per voice turn; the agent nests spans for classification,
follow-up interception, dispatch and personalisation under it:

    tracer = Tracer.start("aaran_turn", session_id=..., metadata={...})
    with tracer.span("classify") as sp:
        sp.update(output={"intent": "POSITION_CHANGE"})
    tracer.end(output=reply)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Generator

from langfuse import Langfuse

from ..config.settings import LANGFUSE_HOST, LANGFUSE_PUBLIC_KEY, LANGFUSE_SECRET_KEY

logger = logging.getLogger(__name__)

_client: Langfuse | None = None
_configured = False


def _get_client() -> Langfuse | None:
    """Create the Langfuse client once, on first use."""
    global _client, _configured
    if _configured:
        return _client
    _configured = True

    if not (LANGFUSE_PUBLIC_KEY and LANGFUSE_SECRET_KEY):
        logger.info("Langfuse keys not set – tracing disabled")
        return None
    try:
        client = Langfuse(
            public_key=LANGFUSE_PUBLIC_KEY,
            secret_key=LANGFUSE_SECRET_KEY,
            host=LANGFUSE_HOST,
        )
        if client.auth_check():
            logger.info("Langfuse tracing enabled (auth OK)")
            _client = client
        else:
            logger.warning("Langfuse auth check failed – tracing disabled")
    except Exception as exc:
        logger.warning("Langfuse unavailable – tracing disabled: %s", exc)
    return _client


class Tracer:
    """Root span of one turn; child spans hang off it."""

    def __init__(self, root_span: Any | None = None):
        self._root = root_span
        self._trace_id: str | None = getattr(root_span, "trace_id", None)

    @classmethod
    def start(
        cls,
        name: str,
        *,
        user_id: str = "",
        session_id: str = "",
        metadata: dict | None = None,
    ) -> "Tracer":
        client = _get_client()
        if client is None:
            return cls(None)
        try:
            root = client.start_span(name=name, metadata=metadata or {})
            root.update_trace(
                name=name,
                user_id=user_id or None,
                session_id=session_id or None,
                metadata=metadata or {},
            )
            logger.debug("Langfuse trace started: %s", root.trace_id)
            return cls(root)
        except Exception as exc:
            logger.warning("Langfuse trace start error: %s", exc)
            return cls(None)

    @contextmanager
    def span(self, name: str, **kwargs) -> Generator["_Span", None, None]:
        sp = _Span.create(name, parent=self._root, **kwargs)
        try:
            yield sp
        except Exception as exc:
            sp.update(level="ERROR", status_message=str(exc))
            raise
        finally:
            sp.finish()

    def end(self, *, output: Any = None):
        if self._root is not None:
            try:
                if output is not None:
                    self._root.update(output=output)
                self._root.end()
            except Exception as exc:
                logger.debug("Langfuse root span end error: %s", exc)
            client = _get_client()
            if client is not None:
                try:
                    client.flush()
                except Exception as exc:
                    logger.debug("Langfuse flush error: %s", exc)

    @property
    def trace_id(self) -> str | None:
        return self._trace_id


class _Span:
    """One span inside a trace."""

    def __init__(self, name: str, lang_span: Any | None = None):
        self.name = name
        self._span = lang_span

    @classmethod
    def create(cls, name: str, parent: Any | None = None, **kwargs) -> "_Span":
        if parent is None:
            return cls(name, None)
        try:
            child = parent.start_span(name=name, metadata=kwargs.get("metadata"))
            return cls(name, child)
        except Exception as exc:
            logger.debug("Langfuse child span error (%s): %s", name, exc)
            return cls(name, None)

    def update(self, **kwargs):
        if self._span is not None:
            try:
                self._span.update(**kwargs)
            except Exception as exc:
                logger.debug("Langfuse span update error (%s): %s", self.name, exc)

    def finish(self):
        if self._span is not None:
            try:
                self._span.end()
            except Exception as exc:
                logger.debug("Langfuse span end error (%s): %s", self.name, exc)
