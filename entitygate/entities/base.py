"""Declarative base for entities owned by entitygate itself."""

from __future__ import annotations

from sqlalchemy import orm


class Base(orm.DeclarativeBase):
    """Base class for entitygate's own ORM entities.

    Notes
    -----
    Applications usually keep their own declarative base and list its
    metadata next to ``Base.metadata`` in
    :class:`entitygate.config.EntityManagerConfiguration`.
    """
