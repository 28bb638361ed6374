"""Ingestion boundary: untrusted raw payload -> Event."""

from reflexagent.ingestion.parser import InvalidPayloadError, decode_payload, event_name_for, parse_payload

__all__ = ["InvalidPayloadError", "decode_payload", "event_name_for", "parse_payload"]
