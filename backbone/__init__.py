"""
Event-distribution backbone.

Services announce facts by publishing enveloped events to the topic exchange
they own. Topic routing delivers each event to every queue bound to its name,
and each consuming service drains its queues with one worker per queue,
dropping duplicates before they reach a handler.
"""

from backbone.consumer import Consumer, DispatchOutcome, Dispatcher, HandlerRegistry, QueueWorker
from backbone.dedup import DedupFilter, RedisDedupStore
from backbone.envelope import Envelope, EnvelopeError
from backbone.events import EventTypes, PayloadError, decode_payload
from backbone.publisher import PublishError, PublishResult, Publisher
from backbone.runtime import BrokerConnectionError, ServiceRuntime
from backbone.topology import Binding, Exchanges, TopologyError

__all__ = [
    "Binding",
    "BrokerConnectionError",
    "Consumer",
    "DedupFilter",
    "DispatchOutcome",
    "Dispatcher",
    "Envelope",
    "EnvelopeError",
    "EventTypes",
    "Exchanges",
    "HandlerRegistry",
    "PayloadError",
    "PublishError",
    "PublishResult",
    "Publisher",
    "QueueWorker",
    "RedisDedupStore",
    "ServiceRuntime",
    "TopologyError",
    "decode_payload",
]
