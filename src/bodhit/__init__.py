"""BODHIT mentor-conversation engine.

Turns a streamed assistant reply into confirmed, auditable changes to a
student's project: intake negotiation, SSE decoding, fenced command
extraction and gated operation dispatch.
"""

__version__ = "0.1.0"
