"""Entity references.

Instances point at host-application objects (the gated target entity, the
acting user) without a foreign key. An ``EntityRef`` is the (type, id)
pair persisted for those objects.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class EntityRef:
    type: str
    id: str

    def __str__(self) -> str:
        return f"{self.type}:{self.id}"

    @classmethod
    def of(cls, obj: Any) -> "EntityRef | None":
        """Build a reference for a host object.

        Accepts an existing EntityRef, any object exposing an ``id``
        attribute, or None. The type name is the object's ``__tablename__``
        when it is a mapped model, else its class name.
        """
        if obj is None:
            return None
        if isinstance(obj, EntityRef):
            return obj
        obj_id = getattr(obj, "id", None)
        if obj_id is None:
            raise ValueError(f"Cannot reference {type(obj).__name__}: object has no id")
        type_name = getattr(obj, "__tablename__", None) or type(obj).__name__
        return cls(type=str(type_name), id=str(obj_id))


def actor_key(actor: Any) -> str | None:
    """Return the identifier used to match an actor against assignee lists."""
    if actor is None:
        return None
    if isinstance(actor, (str, int)):
        return str(actor)
    ref = EntityRef.of(actor)
    return ref.id if ref else None


def actor_ref(actor: Any) -> EntityRef | None:
    """Reference persisted for an actor; bare ids are typed ``actor``."""
    if actor is None:
        return None
    if isinstance(actor, (str, int)):
        return EntityRef(type="actor", id=str(actor))
    return EntityRef.of(actor)
