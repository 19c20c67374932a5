"""FastAPI dependencies resolving the shared record store and notification sender."""

from fastapi import Request

from restaurant_agent.services.notifications import NotificationSender
from restaurant_agent.services.record_store import RecordStore


def get_record_store(request: Request) -> RecordStore:
    return request.app.state.record_store


def get_notifier(request: Request) -> NotificationSender:
    return request.app.state.notifier
