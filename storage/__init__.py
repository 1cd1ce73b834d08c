"""
Storage Package.

Relational persistence for Pulse alert configuration and events.

Modules:
- database: Engine, session factory and transaction scope
- models/: ORM models
- repositories/: Data access layer
"""
