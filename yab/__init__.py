"""Request serializers, streaming call drivers and benchmark running and reporting."""

__version__ = "0.1.0"
__all__ = ["benchmark", "caller", "encoding", "state", "streaming"]