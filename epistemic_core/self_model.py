"""Self models, their belief systems and the philosophies they subscribe to."""

import logging

from epistemic_core.dialectic import BELIEF_SYSTEM_KEY
from epistemic_core.errors import NotFoundError, StaleVersionError, ValidationError
from epistemic_core.kv_store import KeyValueStore, Write
from epistemic_core.models import BeliefSystem, BeliefSystemMetrics, ObservationContext, Philosophy, SelfModel
from epistemic_core.predictive_processing import (
    ExtrapolationCache,
    belief_metrics,
    ensure_context,
    extrapolate_context_tree,
)

logger = logging.getLogger(__name__)

SELF_MODEL_KEY = "SelfModel"
PHILOSOPHY_KEY = "Philosophy"


class SelfModelService:
    def __init__(self, store: KeyValueStore, cache: ExtrapolationCache | None = None):
        self.store = store
        self.cache = cache if cache is not None else ExtrapolationCache()

    async def create_self_model(self, self_model_id: str, philosophies: list[str] | None = None) -> SelfModel:
        """Create the self model together with an empty belief system."""
        if not self_model_id:
            raise ValidationError("self model id cannot be empty")

        self_model = SelfModel(id=self_model_id, philosophies=list(philosophies or []))
        belief_system = BeliefSystem()
        ensure_context(belief_system)
        try:
            await self.store.store_many([
                Write(self_model_id, SELF_MODEL_KEY, self_model, 1, 0),
                Write(self_model_id, BELIEF_SYSTEM_KEY, belief_system, 1, 0),
            ])
        except StaleVersionError:
            raise ValidationError(f"self model {self_model_id} already exists") from None
        logger.info("created self model %s", self_model_id)
        return self_model

    async def get_self_model(self, self_model_id: str) -> SelfModel:
        try:
            return await self.store.retrieve_latest(self_model_id, SELF_MODEL_KEY)
        except NotFoundError:
            raise NotFoundError(f"self model {self_model_id} not found") from None

    async def get_belief_system(self, self_model_id: str) -> BeliefSystem:
        try:
            return await self.store.retrieve_latest(self_model_id, BELIEF_SYSTEM_KEY)
        except NotFoundError:
            return BeliefSystem()

    async def belief_system_metrics(self, self_model_id: str) -> BeliefSystemMetrics:
        return belief_metrics(await self.get_belief_system(self_model_id))

    # --- Philosophies ---

    async def create_philosophy(
        self,
        description: str,
        extrapolate_contexts: bool = False,
    ) -> tuple[Philosophy, list[ObservationContext]]:
        philosophy = Philosophy(description=description, extrapolate_contexts=extrapolate_contexts)
        await self.store.store(philosophy.id, PHILOSOPHY_KEY, philosophy, 1, expected_version=0)
        return philosophy, self._extrapolate(philosophy)

    async def get_philosophy(self, philosophy_id: str) -> Philosophy:
        try:
            return await self.store.retrieve_latest(philosophy_id, PHILOSOPHY_KEY)
        except NotFoundError:
            raise NotFoundError(f"philosophy {philosophy_id} not found") from None

    async def update_philosophy(
        self,
        philosophy_id: str,
        description: str,
        extrapolate_contexts: bool = False,
    ) -> tuple[Philosophy, list[ObservationContext]]:
        if not philosophy_id:
            raise ValidationError("philosophy id cannot be empty")

        async with self.store.lock(philosophy_id, PHILOSOPHY_KEY):
            try:
                philosophy, version = await self.store.retrieve_latest_versioned(philosophy_id, PHILOSOPHY_KEY)
            except NotFoundError:
                raise NotFoundError(f"philosophy {philosophy_id} not found") from None
            philosophy.description = description
            philosophy.extrapolate_contexts = extrapolate_contexts
            await self.store.store(philosophy_id, PHILOSOPHY_KEY, philosophy, version + 1, expected_version=version)

        self.cache.invalidate(philosophy_id)
        return philosophy, self._extrapolate(philosophy)

    async def add_philosophy(self, self_model_id: str, philosophy_id: str) -> SelfModel:
        await self.get_philosophy(philosophy_id)
        async with self.store.lock(self_model_id, SELF_MODEL_KEY):
            try:
                self_model, version = await self.store.retrieve_latest_versioned(self_model_id, SELF_MODEL_KEY)
            except NotFoundError:
                raise NotFoundError(f"self model {self_model_id} not found") from None
            if philosophy_id not in self_model.philosophies:
                self_model.philosophies.append(philosophy_id)
                await self.store.store(self_model_id, SELF_MODEL_KEY, self_model, version + 1, expected_version=version)
        return self_model

    async def seed_philosophy_contexts(self, self_model_id: str) -> list[ObservationContext]:
        """Add the contexts extrapolated from the self model's philosophies to its belief system.

        Contexts whose name is already in the graph are skipped. Returns the added ones.
        """
        self_model = await self.get_self_model(self_model_id)
        async with self.store.lock(self_model_id, BELIEF_SYSTEM_KEY):
            try:
                belief_system, version = await self.store.retrieve_latest_versioned(self_model_id, BELIEF_SYSTEM_KEY)
            except NotFoundError:
                belief_system, version = BeliefSystem(), 0
            ppc = ensure_context(belief_system)
            known = {oc.name for oc in ppc.observation_contexts}

            added = []
            for philosophy_id in self_model.philosophies:
                philosophy = await self.get_philosophy(philosophy_id)
                contexts = self._extrapolate(philosophy)
                # A context whose parent is skipped becomes a root.
                ids = {oc.id for oc in contexts if oc.name not in known}
                for oc in contexts:
                    if oc.id not in ids:
                        continue
                    if oc.parent_id and oc.parent_id not in ids:
                        oc.parent_id = ""
                    ppc.observation_contexts.append(oc)
                    known.add(oc.name)
                    added.append(oc)

            if added:
                await self.store.store(self_model_id, BELIEF_SYSTEM_KEY, belief_system, version + 1, expected_version=version)
                logger.info("seeded %d philosophy contexts into %s", len(added), self_model_id)
        return [oc.model_copy(deep=True) for oc in added]

    def _extrapolate(self, philosophy: Philosophy) -> list[ObservationContext]:
        if not philosophy.extrapolate_contexts:
            return []
        cached = self.cache.get(philosophy.id)
        if cached is not None:
            return cached
        contexts = extrapolate_context_tree(philosophy.description)
        self.cache.put(philosophy.id, contexts)
        return self.cache.get(philosophy.id)
