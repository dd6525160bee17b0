from .payload import decode_payload, sniff_content_type

__all__ = ["decode_payload", "sniff_content_type"]
