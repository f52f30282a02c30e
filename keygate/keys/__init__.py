"""keygate API key lifecycle package.

  - models.py: KeyRecord, KeyRecordView, mask()
  - store.py : KeyStore (generate / check / validate / revoke / rotate /
                list / expiring_within / ensure_seed_key), ValidationOutcome

Submodules are imported directly (``from keygate.keys.store import KeyStore``);
nothing is re-exported here because keygate.storage imports
keygate.keys.models.
"""
