"""
Provenance Ledger - Audit trail and backward-reference tracing for a case.

Handoff and action records are appended to the case document through the
store, so they share its single-writer guarantees. Tracing walks backward
references from any item down to its foundation roots.
"""

import logging
from dataclasses import dataclass, field

from src.models.case import ActionRecord, Case, HandoffRecord, LayerItem
from src.models.enums import LAYER_ORDER, LayerName
from src.pipeline.errors import NotFound
from src.pipeline.store import LayerStore


logger = logging.getLogger(__name__)


@dataclass
class ChainLink:
    """Items reached at one layer while walking references backward."""

    layer: LayerName
    items: list[LayerItem] = field(default_factory=list)


@dataclass
class TracedChain:
    """
    Provenance chain for one item.

    Links run from the item's own layer down to foundation, so the first link
    holds exactly the starting item and the last link holds the roots.
    """

    case_id: str
    item_id: str
    links: list[ChainLink] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.links)

    @property
    def items(self) -> list[LayerItem]:
        return [item for link in self.links for item in link.items]

    @property
    def roots(self) -> list[LayerItem]:
        return list(self.links[-1].items) if self.links else []

    def to_dict(self) -> dict:
        return {
            "case_id": self.case_id,
            "item_id": self.item_id,
            "links": [
                {
                    "layer": link.layer.value,
                    "items": [item.model_dump(mode="json") for item in link.items],
                }
                for link in self.links
            ],
        }


class ProvenanceLedger:
    """Append-only handoff/action records plus reference tracing."""

    def __init__(self, store: LayerStore):
        self.store = store

    def append_handoff(self, case_id: str, record: HandoffRecord) -> Case:
        def apply(case: Case) -> None:
            case.handoffs.append(record)

        logger.debug(
            f"Handoff {record.source_stage.value} -> {record.destination_stage.value} "
            f"for case {case_id}: {record.summary}"
        )
        return self.store.mutate(case_id, apply)

    def append_action(self, case_id: str, record: ActionRecord) -> Case:
        """Append an action record and add its inference time to the case total."""

        def apply(case: Case) -> None:
            case.actions.append(record)
            case.total_processing_time_ms += record.inference_time_ms

        return self.store.mutate(case_id, apply)

    def traced_chain(self, case_id: str, item_id: str) -> TracedChain:
        """
        Resolve the full provenance chain of an item.

        Args:
            case_id: Case holding the item
            item_id: Item to start from

        Returns:
            TracedChain ordered from the item's layer down to foundation

        Raises:
            NotFound: Unknown case or item, or any reference in the walk that
                does not resolve (the chain is never returned partially)
        """
        case = self.store.get_case(case_id)
        found = case.find_item(item_id)
        if found is None:
            raise NotFound(f"Item {item_id} not found in case {case_id}")

        start_layer, start_item = found
        reached: dict[LayerName, dict[str, LayerItem]] = {start_layer: {item_id: start_item}}

        # References only point to strictly earlier layers, so one pass from
        # the top layer down visits every item exactly once.
        for layer in reversed(LAYER_ORDER[: start_layer.rank + 1]):
            for item in list(reached.get(layer, {}).values()):
                for ref in item.references:
                    target = case.find_item(ref)
                    if target is None:
                        raise NotFound(
                            f"Broken provenance in case {case_id}: {item.item_id} -> {ref}"
                        )
                    ref_layer, ref_item = target
                    if ref_layer.rank >= layer.rank:
                        raise NotFound(
                            f"Broken provenance in case {case_id}: {item.item_id} -> {ref} "
                            f"is not in an earlier layer"
                        )
                    reached.setdefault(ref_layer, {})[ref] = ref_item

        links = [
            ChainLink(layer=layer, items=list(reached[layer].values()))
            for layer in reversed(LAYER_ORDER)
            if layer in reached
        ]
        if links[-1].layer != LayerName.FOUNDATION:
            raise NotFound(f"Item {item_id} in case {case_id} does not trace to foundation")

        return TracedChain(case_id=case_id, item_id=item_id, links=links)


def verify_references(case: Case) -> list[str]:
    """
    Check every backward reference in a whole document.

    Returns:
        Human-readable violations; empty when every backward reference
        resolves to an item in a strictly earlier, completed layer.
    """
    index = case.item_index()
    violations = []
    for layer in LAYER_ORDER:
        for item in case.layers.get(layer).items:
            for ref in item.references:
                owner = index.get(ref)
                if owner is None:
                    violations.append(f"{item.item_id} -> {ref}: unknown item")
                elif owner.rank >= layer.rank:
                    violations.append(f"{item.item_id} -> {ref}: not an earlier layer")
                elif not case.layers.get(owner).completed:
                    violations.append(f"{item.item_id} -> {ref}: layer {owner.value} incomplete")
    return violations
