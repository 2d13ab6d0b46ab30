"""
Reactor: entity-lifecycle events over a job queue.

Models publish events from their create / update lifecycle, subscribers
declare handlers for event names, and both sides meet on a job queue.
"""

from reactor.bus import Reactor
from reactor.data import IndifferentDict
from reactor.errors import (
    ConfirmationRequired,
    DuplicateHandlerDefinition,
    EntityNotFound,
    ReactorError,
    UndeliverableMessage,
    UnconfiguredWorker,
    ValidationError,
)
from reactor.event import EVENT_JOB, Event
from reactor.mailers import Mailer, MailMessage, MemoryDelivery
from reactor.publishable import Publishable, PublisherRule
from reactor.references import EntityStore
from reactor.subscribers import WILDCARD, SubscriberRegistry
from reactor.workers import PERFORM_ABORTED, HandlerUnit, MailerHandlerUnit

__all__ = [
    "EVENT_JOB",
    "PERFORM_ABORTED",
    "WILDCARD",
    "ConfirmationRequired",
    "DuplicateHandlerDefinition",
    "EntityNotFound",
    "EntityStore",
    "Event",
    "HandlerUnit",
    "IndifferentDict",
    "MailMessage",
    "Mailer",
    "MailerHandlerUnit",
    "MemoryDelivery",
    "Publishable",
    "PublisherRule",
    "Reactor",
    "ReactorError",
    "SubscriberRegistry",
    "UndeliverableMessage",
    "UnconfiguredWorker",
    "ValidationError",
]
