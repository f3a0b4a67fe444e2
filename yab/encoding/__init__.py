"""Request serializers, multi-message input decoding and lookup errors."""

__all__ = ["inputdecoder", "notfound", "serializers"]