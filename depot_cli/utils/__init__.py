"""
Shared helpers: credential redaction, human-readable formatting and the
structured JSONL event log.
"""
