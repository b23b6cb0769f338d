# upkeep/events.py
"""In-process event bus for estimate lifecycle notifications."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

import requests
from flask import current_app
from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session

from upkeep import db

Handler = Callable[[str, Dict[str, Any]], None]

ALL_EVENTS = '*'
_PENDING_KEY = 'upkeep_pending_events'


class EventBus:
    """Explicit register/unregister/emit registry.

    Handlers are called synchronously in registration order.  A failing
    handler is logged and skipped.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def register(self, event: str, handler: Handler) -> None:
        if handler not in self._handlers[event]:
            self._handlers[event].append(handler)

    def unregister(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def handlers_for(self, event: str) -> List[Handler]:
        return list(self._handlers.get(event, [])) + list(self._handlers.get(ALL_EVENTS, []))

    def emit(self, event: str, payload: Optional[Dict[str, Any]] = None) -> int:
        """Deliver ``event`` to its handlers and return how many succeeded."""
        payload = payload or {}
        delivered = 0
        for handler in self.handlers_for(event):
            try:
                handler(event, payload)
                delivered += 1
            except Exception as e:
                logging.warning("event handler %r failed for %s: %s", handler, event, e)
        return delivered


class WebhookNotifier:
    """Posts every event it receives as JSON to an outside URL."""

    def __init__(self, url: str, token: str | None = None, timeout: int = 10) -> None:
        self.url = url
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({'Accept': 'application/json'})
        if token:
            self.session.headers['Authorization'] = f'Bearer {token}'

    def __call__(self, event: str, payload: Dict[str, Any]) -> None:
        try:
            resp = self.session.post(
                self.url, json={'event': event, 'data': payload}, timeout=self.timeout
            )
            resp.raise_for_status()
            logging.info("webhook %s -> %s", event, resp.status_code)
        except requests.HTTPError as e:
            logging.warning("webhook rejected %s (%s): %s", event, e.response.status_code, e)
        except requests.RequestException as e:
            logging.warning("webhook network error for %s: %s", event, e)


def init_events(app) -> EventBus:
    bus = EventBus()
    url = app.config.get('NOTIFY_WEBHOOK_URL')
    if url:
        bus.register(
            ALL_EVENTS,
            WebhookNotifier(
                url,
                token=app.config.get('NOTIFY_WEBHOOK_TOKEN'),
                timeout=app.config.get('NOTIFY_TIMEOUT', 10),
            ),
        )
    app.extensions['upkeep_events'] = bus
    return bus


def get_bus() -> EventBus:
    return current_app.extensions['upkeep_events']


def emit(event: str, payload: Optional[Dict[str, Any]] = None) -> int:
    return get_bus().emit(event, payload)


def publish(event: str, payload: Optional[Dict[str, Any]] = None) -> None:
    """Queue ``event`` on the current session; it is emitted after commit."""
    db.session.info.setdefault(_PENDING_KEY, []).append((event, payload or {}))


@sa_event.listens_for(Session, 'after_commit')
def _emit_pending(session) -> None:
    pending = session.info.pop(_PENDING_KEY, [])
    for name, payload in pending:
        emit(name, payload)


@sa_event.listens_for(Session, 'after_rollback')
def _drop_pending(session) -> None:
    session.info.pop(_PENDING_KEY, None)
