from __future__ import annotations

from datetime import datetime
from typing import Iterator

from sqlalchemy import literal, select
from sqlalchemy.orm import Session, aliased

from app.models.shipment import Shipment
from app.services.errors import NotFound, ValidationError
from app.services.stages import SHIPPING_READY_STAGE

# Guards the recursive queries against parent cycles in bad data.
MAX_FAMILY_DEPTH = 500


def shipping_order_key(shipment: Shipment) -> tuple[int, datetime, int]:
    ready = 0 if (shipment.shipment_stage_id or 0) >= SHIPPING_READY_STAGE else 1
    return ready, shipment.created_at or datetime.min, shipment.id


class ShipmentForest:
    """
    In-memory view of one shipment family: a root lot plus every lot split
    from it, directly or transitively.
    """

    def __init__(self, root_id: int, members: list[Shipment]):
        self.by_id: dict[int, Shipment] = {member.id: member for member in members}
        if root_id not in self.by_id:
            raise NotFound(message=f"Shipment {root_id} not found.", details={"shipment_id": root_id})
        self.root_id = root_id
        self.children: dict[int, list[int]] = {member.id: [] for member in members}
        for member in sorted(members, key=lambda m: m.id):
            parent_id = member.parent_shipment_id
            if member.id == root_id:
                continue
            if parent_id not in self.by_id:
                raise ValidationError(
                    message=f"Shipment {member.id} is not connected to family root {root_id}.",
                    details={"shipment_id": member.id, "root_id": root_id},
                )
            self.children[parent_id].append(member.id)
        self._check_acyclic()

    def _check_acyclic(self) -> None:
        seen: set[int] = set()
        stack = [self.root_id]
        while stack:
            current = stack.pop()
            if current in seen:
                raise ValidationError(
                    message=f"Shipment family of {self.root_id} contains a cycle.",
                    details={"root_id": self.root_id, "shipment_id": current},
                )
            seen.add(current)
            stack.extend(self.children[current])
        if len(seen) != len(self.by_id):
            orphans = sorted(set(self.by_id) - seen)
            raise ValidationError(
                message=f"Shipment family of {self.root_id} contains a cycle.",
                details={"root_id": self.root_id, "shipment_ids": orphans},
            )

    def __len__(self) -> int:
        return len(self.by_id)

    @property
    def root(self) -> Shipment:
        return self.by_id[self.root_id]

    @property
    def members(self) -> list[Shipment]:
        return list(self.by_id.values())

    def walk(self) -> Iterator[tuple[Shipment, int]]:
        """Depth-first (shipment, depth) pairs, children in id order."""
        stack = [(self.root_id, 0)]
        while stack:
            current, depth = stack.pop()
            yield self.by_id[current], depth
            for child_id in reversed(self.children[current]):
                stack.append((child_id, depth + 1))

    def in_shipping_order(self) -> list[Shipment]:
        return sorted(self.by_id.values(), key=shipping_order_key)


class ShipmentFamilyRepository:
    def __init__(self, db: Session):
        self.db = db

    def find_root_id(self, shipment_id: int) -> int:
        ancestors = (
            select(
                Shipment.id.label("id"),
                Shipment.parent_shipment_id.label("parent_id"),
                literal(0).label("depth"),
            )
            .where(Shipment.id == shipment_id)
            .cte("shipment_ancestors", recursive=True)
        )
        parent = aliased(Shipment)
        ancestors = ancestors.union_all(
            select(parent.id, parent.parent_shipment_id, ancestors.c.depth + 1).where(
                parent.id == ancestors.c.parent_id,
                ancestors.c.depth < MAX_FAMILY_DEPTH,
            )
        )
        rows = self.db.execute(
            select(ancestors.c.id, ancestors.c.parent_id).order_by(ancestors.c.depth)
        ).all()
        if not rows:
            raise NotFound(message=f"Shipment {shipment_id} not found.", details={"shipment_id": shipment_id})

        seen: set[int] = set()
        for row_id, parent_id in rows:
            if row_id in seen:
                break
            seen.add(row_id)
            if parent_id is None:
                return int(row_id)
        raise ValidationError(
            message=f"Shipment {shipment_id} has a cyclic parent chain.",
            details={"shipment_id": shipment_id},
        )

    def descendant_ids(self, root_id: int) -> list[int]:
        family = (
            select(Shipment.id.label("id"), literal(0).label("depth"))
            .where(Shipment.id == root_id)
            .cte("shipment_family", recursive=True)
        )
        child = aliased(Shipment)
        family = family.union_all(
            select(child.id, family.c.depth + 1).where(
                child.parent_shipment_id == family.c.id,
                family.c.depth < MAX_FAMILY_DEPTH,
            )
        )
        ids = self.db.execute(select(family.c.id).distinct()).scalars().all()
        return sorted(int(value) for value in ids)

    def load_family(self, any_member_id: int, *, for_update: bool = False) -> ShipmentForest:
        root_id = self.find_root_id(any_member_id)
        ids = self.descendant_ids(root_id)
        stmt = select(Shipment).where(Shipment.id.in_(ids)).order_by(Shipment.id)
        if for_update:
            stmt = stmt.with_for_update()
        members = list(self.db.execute(stmt).scalars())
        return ShipmentForest(root_id, members)
