import pytest

from epistemic_core.errors import NotFoundError, ValidationError
from epistemic_core.models import BeliefSystem
from epistemic_core.predictive_processing import find_context

NARRATIVE = """## Experiential Narrative
[[C: Circadian Rhythm]]
  [[S: asleep]]
  [[S: awake]]
"""


async def test_create_and_get(self_models):
    created = await self_models.create_self_model("u", ["p-1"])
    fetched = await self_models.get_self_model("u")

    assert fetched.id == created.id == "u"
    assert fetched.philosophies == ["p-1"]
    assert find_context(await self_models.get_belief_system("u")) is not None


async def test_duplicate_self_model(self_models):
    await self_models.create_self_model("u")
    with pytest.raises(ValidationError):
        await self_models.create_self_model("u")


async def test_missing_self_model(self_models):
    with pytest.raises(NotFoundError):
        await self_models.get_self_model("nobody")


async def test_missing_belief_system_is_empty(self_models):
    bs = await self_models.get_belief_system("nobody")
    assert bs == BeliefSystem()
    assert (await self_models.belief_system_metrics("nobody")).total_beliefs == 0


async def test_philosophy_extrapolation_is_cached(self_models, cache):
    philosophy, contexts = await self_models.create_philosophy(NARRATIVE, extrapolate_contexts=True)

    assert [c.name for c in contexts] == ["Circadian Rhythm"]
    assert philosophy.id in cache
    assert [c.id for c in cache.get(philosophy.id)] == [c.id for c in contexts]


async def test_philosophy_without_extrapolation(self_models, cache):
    philosophy, contexts = await self_models.create_philosophy(NARRATIVE)
    assert contexts == []
    assert philosophy.id not in cache


async def test_update_philosophy_invalidates_cache(self_models, cache):
    philosophy, before = await self_models.create_philosophy(NARRATIVE, extrapolate_contexts=True)
    updated, after = await self_models.update_philosophy(
        philosophy.id, "## Experiential Narrative\n[[C: Diet]]\n", extrapolate_contexts=True,
    )

    assert updated.description.endswith("[[C: Diet]]\n")
    assert [c.name for c in after] == ["Diet"]
    assert [c.name for c in cache.get(philosophy.id)] == ["Diet"]
    assert (await self_models.get_philosophy(philosophy.id)).description == updated.description


async def test_update_unknown_philosophy(self_models):
    with pytest.raises(NotFoundError):
        await self_models.update_philosophy("missing", "x")


async def test_add_philosophy_once(self_models):
    await self_models.create_self_model("u")
    philosophy, _ = await self_models.create_philosophy("Sleep first")

    await self_models.add_philosophy("u", philosophy.id)
    model = await self_models.add_philosophy("u", philosophy.id)
    assert model.philosophies == [philosophy.id]


async def test_add_unknown_philosophy(self_models):
    await self_models.create_self_model("u")
    with pytest.raises(NotFoundError):
        await self_models.add_philosophy("u", "missing")


async def test_seed_philosophy_contexts(self_models):
    await self_models.create_self_model("u")
    philosophy, _ = await self_models.create_philosophy(NARRATIVE, extrapolate_contexts=True)
    await self_models.add_philosophy("u", philosophy.id)

    added = await self_models.seed_philosophy_contexts("u")
    again = await self_models.seed_philosophy_contexts("u")

    assert [c.name for c in added] == ["Circadian Rhythm"]
    assert again == []
    ppc = find_context(await self_models.get_belief_system("u"))
    assert ppc.observation_contexts[0].possible_states == ["asleep", "awake"]
