"""
TableDB Server - relational tables on top of a flat blob store.

This package implements a multi-tenant document store built on:
- Tables: named collections of JSON row documents with a declared schema
- Relationships: foreign-key edges declared on the child table
- A flat key/value blob store (S3 or in-memory) as the only persistence

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌──────────────────────┐
    │   Caller    │────▶│   TableDB   │────▶│ Referential Integrity│
    │ (HTTP / AI) │     │   service   │     │        Engine        │
    └─────────────┘     └──────┬──────┘     └──────────┬───────────┘
                               │                       │
               ┌───────────────┼───────────────┐       │
               ▼               ▼               ▼       ▼
         ┌──────────┐   ┌──────────┐   ┌──────────────────┐
         │ Folders  │   │  Schema  │   │    Row Store     │
         │          │   │ Registry │   │                  │
         └────┬─────┘   └────┬─────┘   └────────┬─────────┘
              └──────────────┼──────────────────┘
                             ▼
                  ┌─────────────────────┐
                  │  Tenant Key Space   │
                  │  + Blob Store (S3)  │
                  └─────────────────────┘

Invariants:
    - Every key is scoped to exactly one tenant (hub)
    - Foreign keys are checked at write time by scanning target rows
    - A restrict-blocked delete performs no mutation at all
    - The blob store holds all state; nothing is cached in process

How to change safely:
    - Keep the persisted key layout stable (see keyspace.py)
    - Table schemas only evolve additively
    - Swap the scan-based reference lookups only behind ReferenceScanner
"""

from ._version import __version__

__all__ = ["__version__"]
