from ember.sse.parser import SSEEvent, SSEStreamParser

__all__ = ["SSEEvent", "SSEStreamParser"]
