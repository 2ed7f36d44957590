from adms_server.events.event_stream import EventStream, device_event_stream
from adms_server.events.template_events import (
    TemplateChanged,
    TemplateEventDispatcher,
    template_events,
)

__all__ = [
    "EventStream",
    "device_event_stream",
    "TemplateChanged",
    "TemplateEventDispatcher",
    "template_events",
]
