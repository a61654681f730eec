"""Flowdesk core: resumable, abortable streaming of agent output.

Subpackages:
    agent   - token sources (agent providers) and their event types
    store   - chat/message persistence collaborators
    pubsub  - keyed publish/subscribe channels (abort signalling)
    stream  - registry, controller, resume/abort handlers, wire codec

The HTTP layer lives in ``flowdesk.api`` and must not be imported from here.
"""
