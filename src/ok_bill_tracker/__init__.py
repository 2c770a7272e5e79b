"""Oklahoma bill tracker: Open States sync and stage classification.

Pulls Oklahoma legislators and bills from the Open States v3 API, infers a
coarse lifecycle stage for every bill from its action history, and reconciles
the result into a relational database:

- **Legislators**: upserted by Open States person id
- **Bills**: upserted by Open States bill id, with actions and sponsorships
- **History**: one row per observed stage transition
- **Sync metadata**: last outcome per sync type, for operators

Run everything with: ``python scripts/sync.py``
"""
