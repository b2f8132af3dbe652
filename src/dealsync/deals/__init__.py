"""Deal sync module -- canonical deal schemas, canonicalization, record store and query surface.

Provides Pydantic schemas (DealRecord, DealProduct, notes/attachments,
FieldOptionsMap), the canonicalization engine turning raw Pipedrive JSON
into DealRecords, RecordStore for durable storage with in-memory fallback,
and DealService as the caller-facing API.
"""
