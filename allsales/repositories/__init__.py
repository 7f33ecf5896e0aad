"""
Repositories package
Database queries live here, models stay plain table definitions.

Each repository encapsulates database operations for a model:
- catalog_repository.py
- blacklist_repository.py
- syncrun_repository.py

Usage:
    from allsales.repositories.catalog_repository import CatalogRepository
    record = CatalogRepository.get_by_external_id(440)
"""
