import asyncio

from groupwarden.core.models import MutationIntent, Participant
from groupwarden.membership.batch import BatchRunner, number_groups_by_name, plan_batch

GROUP = "120363000000000001@g.us"
BOT_JID = "628000000001@s.whatsapp.net"


def _runner(mutator, sleep, **kwargs) -> BatchRunner:
    kwargs.setdefault("pacing_s", 3.0)
    kwargs.setdefault("rate_limit_cooldown_s", 60.0)
    return BatchRunner(mutator, sleep=sleep, **kwargs)


def test_plan_batch_is_group_major() -> None:
    intents = plan_batch("add", ["g1", "g2"], ["6281111111111", "6282222222222"])

    assert [(i.group_id, i.phone) for i in intents] == [
        ("g1", "6281111111111"),
        ("g1", "6282222222222"),
        ("g2", "6281111111111"),
        ("g2", "6282222222222"),
    ]


def test_plan_batch_rename_is_one_intent_per_group() -> None:
    intents = plan_batch("rename", ["g1", "g2"], ["6281111111111"], new_name="Kelas 7")

    assert intents == [
        MutationIntent(operation="rename", group_id="g1", new_name="Kelas 7"),
        MutationIntent(operation="rename", group_id="g2", new_name="Kelas 7"),
    ]


def test_number_groups_by_name_orders_by_current_number() -> None:
    groups = [("g3", "Kelas 3"), ("g1", "Kelas 1"), ("g10", "Kelas 10"), ("gx", "Umum"), ("g12", "Kelas 12")]

    renamed = number_groups_by_name(groups, "Kelas Baru", first=1, last=10)

    assert renamed == [("g1", "Kelas Baru 1"), ("g3", "Kelas Baru 2"), ("g10", "Kelas Baru 3")]


def test_number_groups_by_name_with_custom_start() -> None:
    renamed = number_groups_by_name([("a", "Group 2"), ("b", "Group 1")], "Angkatan", start=5)

    assert renamed == [("b", "Angkatan 5"), ("a", "Angkatan 6")]


async def test_batch_counts_outcomes_and_paces_items(directory, make_mutator, sleep) -> None:
    directory.add_group(Participant(BOT_JID, "admin"), Participant("6281111111111@s.whatsapp.net"))
    directory.statuses["add"] = [403]
    runner = _runner(make_mutator(), sleep)
    intents = plan_batch("add", [GROUP], ["6281111111111", "6282222222222", "6283333333333"])
    seen: list[tuple[int, int]] = []

    report = await runner.run(intents, progress=lambda done, total, item: seen.append((done, total)))

    assert report.succeeded == 2
    assert report.failed == 1
    assert report.rate_limited == 0
    assert [item.outcome.reason for item in report.items if item.outcome.ok] == ["already_member", "applied"]
    assert report.items[1].outcome.kind == "not_found"
    assert sleep.delays == [3.0, 3.0]
    assert seen == [(1, 3), (2, 3), (3, 3)]


async def test_rate_limited_item_triggers_cooldown(directory, make_mutator, sleep) -> None:
    directory.add_group(Participant(BOT_JID, "admin"))
    directory.statuses["add"] = [429]
    runner = _runner(make_mutator(add_max_attempts=1), sleep)

    report = await runner.run(plan_batch("add", [GROUP], ["6281111111111", "6282222222222"]))

    assert report.rate_limited == 1
    assert report.failed == 1
    assert report.succeeded == 1
    assert sleep.delays == [60.0, 3.0]


async def test_cancel_stops_between_items(directory, make_mutator, sleep) -> None:
    directory.add_group(Participant(BOT_JID, "admin"))
    cancel = asyncio.Event()
    runner = _runner(make_mutator(), sleep)

    report = await runner.run(
        plan_batch("add", [GROUP], ["6281111111111", "6282222222222"]),
        cancel=cancel,
        progress=lambda done, total, item: cancel.set(),
    )

    assert report.cancelled
    assert report.total == 1
    assert len(directory.mutation_calls("add")) == 1


async def test_unexpected_error_does_not_abort_batch(directory, make_mutator, sleep) -> None:
    directory.add_group(Participant(BOT_JID, "admin"))
    directory.errors["add"] = [RuntimeError("boom")]
    runner = _runner(make_mutator(), sleep)

    report = await runner.run(plan_batch("add", [GROUP], ["6281111111111", "6282222222222"]))

    assert report.items[0].outcome.kind == "transient"
    assert "boom" in report.items[0].outcome.message
    assert report.items[1].outcome.ok


async def test_rename_batch_applies_numbered_names(directory, make_mutator, sleep) -> None:
    directory.add_group(Participant(BOT_JID, "admin"), group_id="g1", subject="Kelas 2")
    directory.add_group(Participant(BOT_JID, "admin"), group_id="g2", subject="Kelas 1")
    names = number_groups_by_name([("g1", "Kelas 2"), ("g2", "Kelas 1")], "Angkatan")
    intents = [MutationIntent(operation="rename", group_id=gid, new_name=name) for gid, name in names]

    report = await _runner(make_mutator(), sleep).run(intents)

    assert report.succeeded == 2
    assert directory.mutation_calls("rename") == [("rename", "g2", "Angkatan 1"), ("rename", "g1", "Angkatan 2")]
