import random

from deckfeed.models.content import LIMIT_REACHED, LOADING_MORE, ContentItem, TierKind
from deckfeed.pipeline.presentation_loop import PLACEHOLDER_KEY, PresentationLoop, RenderKeyRegistry


def items(n, start=0):
    return [ContentItem.from_record({"id": f"c{i}", "title": f"Card {i}"}) for i in range(start, start + n)]


def keys(entries):
    return [e.key for e in entries]


def premium_loop(settings, **kw):
    return PresentationLoop(TierKind.PREMIUM, settings, rng=random.Random(3), **kw)


def test_prefetch_window_appends_reshuffled_pass(settings):
    loop = premium_loop(settings)
    loop.update(items(7))
    assert len(loop.render()) == 7

    assert not loop.on_visible_index(2)
    assert loop.on_visible_index(3)

    rendered = loop.render()
    assert len(rendered) == 14
    assert len(set(keys(rendered))) == 14

    first = {e.entry.id: e for e in rendered[:7]}
    second = {e.entry.id: e for e in rendered[7:]}
    assert set(first) == set(second)
    for card_id in first:
        assert first[card_id].prefix == second[card_id].prefix
        assert first[card_id].key != second[card_id].key
        assert second[card_id].pass_no == 1


def test_no_auto_append_on_initial_load(settings):
    loop = premium_loop(settings)
    loop.update(items(3))
    assert len(loop.render()) == 3
    assert loop.pass_counter == 0


def test_updating_with_same_feed_keeps_appended_passes(settings):
    loop = premium_loop(settings)
    feed = items(7)
    loop.update(feed)
    loop.append_pass()
    assert not loop.update(list(feed))
    assert len(loop.render()) == 14


def test_buffer_is_trimmed_when_it_grows_too_large(settings):
    loop = premium_loop(settings)
    loop.update(items(100))
    loop.append_pass()
    loop.append_pass()

    rendered = loop.render()
    assert len(rendered) == settings.trim_to
    assert len(set(keys(rendered))) == settings.trim_to
    assert loop.pass_counter == 2


def test_pass_counter_survives_base_changes(settings):
    loop = premium_loop(settings)
    loop.update(items(5))
    loop.append_pass()
    loop.update(items(6, start=10))
    loop.append_pass()
    assert loop.buffer[-1].pass_no == 2


def test_prefix_is_stable_across_updates(settings):
    loop = premium_loop(settings)
    loop.update(items(3))
    before = {e.entry.id: e.prefix for e in loop.render()}
    loop.update(items(3, start=1))
    after = {e.entry.id: e.prefix for e in loop.render()}
    assert before["c1"] == after["c1"]
    assert before["c2"] == after["c2"]


def test_premium_renders_only_valid_cards(settings):
    loop = premium_loop(settings)
    loop.update([LOADING_MORE] + items(2) + [ContentItem.from_record({"id": "x"})])
    assert [e.kind for e in loop.render()] == ["card", "card"]


def test_blocking_placeholder_until_first_valid_card(settings):
    loop = PresentationLoop(TierKind.FREE, settings)
    loop.update([LOADING_MORE])
    rendered = loop.render()
    assert len(rendered) == 1
    assert rendered[0].key == PLACEHOLDER_KEY
    assert loop.blocking

    loop.update([LIMIT_REACHED])
    assert keys(loop.render()) == [PLACEHOLDER_KEY]


def test_capped_tier_renders_sentinels_and_asks_for_more(settings):
    calls = []
    loop = PresentationLoop(TierKind.FREE, settings, load_more=lambda: calls.append(1))
    loop.update(items(5) + [LIMIT_REACHED])

    rendered = loop.render()
    assert [e.kind for e in rendered] == ["card"] * 5 + ["limit"]
    assert rendered[-1].prefix == "limit-reached"

    assert not loop.on_visible_index(4)
    assert loop.on_end_reached()
    assert calls == [1]


def test_registry_trims_unknown_ids_above_ceiling():
    registry = RenderKeyRegistry(ceiling=3)
    for card in items(5):
        registry.prefix_for(card)
    assert len(registry) == 5
    assert registry.maybe_trim(["c3", "c4"]) == 3
    assert len(registry) == 2
    assert registry.maybe_trim(["c3"]) == 0
