"""CRM integration layer -- read-only source adapters and deal synchronization.

- CRMSourceAdapter: abstract upstream interface (adapter.py)
- PipedriveAdapter: Pipedrive REST implementation (pipedrive.py)
- FieldMetadataResolver: cached custom field option labels (field_options.py)
- SyncEngine: single-flight bulk refresh of the record store (sync.py)
- field_mapping: hand-curated key aliases for raw deal payloads

Submodules are imported directly; sync.py depends on the canonicalization
engine, which itself reads field_mapping from this package.
"""
