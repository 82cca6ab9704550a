import pytest

from groupwarden.config.defaults import DEFAULT_SEED_MAPPINGS
from groupwarden.core.errors import IdentityResolutionError
from groupwarden.core.models import BotIdentity, GroupSnapshot, NetworkPresence, Participant
from groupwarden.identity.matcher import ParticipantMatcher
from groupwarden.identity.resolver import PhoneIdentifierResolver, Resolution, is_bot_admin

BOT = BotIdentity(jid="628000000001@s.whatsapp.net", lid="99999999999999@lid")
GROUP = "120363000000000001@g.us"


def _resolver(directory, store) -> PhoneIdentifierResolver:
    return PhoneIdentifierResolver(directory, store, ParticipantMatcher(bot=BOT))


def _snapshot(*participants: Participant) -> GroupSnapshot:
    return GroupSnapshot(group_id=GROUP, participants=participants)


async def test_cached_mapping_resolves_without_directory_calls(directory, store, resolver) -> None:
    store.add_mapping("11122233344455@lid", "6281234567890")

    resolution = await resolver.resolve("+62 812 3456 7890")

    assert resolution.identifier == "11122233344455@lid"
    assert resolution.source == "cache"
    assert directory.calls == []


async def test_network_lookup_result_is_cached_globally(directory, store) -> None:
    directory.supports_existence_lookup = True
    directory.network["6281234567890"] = NetworkPresence(exists=True, identifier="11122233344455@lid")
    resolver = _resolver(directory, store)

    resolution = await resolver.resolve("6281234567890", GROUP)

    assert resolution.source == "network"
    assert resolution.verified
    assert store.get_identifier_for_phone("6281234567890") == "11122233344455@lid"


async def test_unsupported_lookup_is_disabled_for_the_session(directory, store) -> None:
    directory.supports_existence_lookup = True
    resolver = _resolver(directory, store)
    directory.supports_existence_lookup = False

    await resolver.resolve("6281234567890")
    await resolver.resolve("6289876543210")

    assert not resolver.existence_lookup_enabled
    assert [call for call in directory.calls if call[0] == "exists"] == [("exists", "6281234567890")]


async def test_probe_confirms_candidate(directory, store, resolver) -> None:
    directory.probe_hits.add("6281234567890@lid")

    resolution = await resolver.resolve("6281234567890")

    assert resolution.identifier == "6281234567890@lid"
    assert resolution.source == "probe"
    assert [call[1] for call in directory.calls if call[0] == "probe"] == [
        "6281234567890@s.whatsapp.net",
        "6281234567890@lid",
    ]
    assert store.get_identifier_for_phone("6281234567890") == "6281234567890@lid"


async def test_unverified_default_is_not_cached(directory, store, resolver) -> None:
    resolution = await resolver.resolve("6281234567890")

    assert resolution.identifier == "6281234567890@s.whatsapp.net"
    assert resolution.source == "default"
    assert not resolution.verified
    assert len(store) == 0


async def test_invalid_phone_is_unresolvable(resolver) -> None:
    with pytest.raises(IdentityResolutionError):
        await resolver.resolve("12345")


async def test_find_participant_direct_match(resolver) -> None:
    snapshot = _snapshot(Participant("6281234567890:1@s.whatsapp.net"), Participant("6289876543210@s.whatsapp.net"))

    match = await resolver.find_participant(snapshot, "6281234567890")

    assert match is not None
    assert match.participant.identifier == "6281234567890:1@s.whatsapp.net"
    assert match.strategy == "direct"


async def test_find_participant_via_resolver_cache(store, resolver) -> None:
    store.add_mapping("11122233344455@lid", "6281234567890")
    snapshot = _snapshot(Participant("11122233344455@lid"))

    match = await resolver.find_participant(snapshot, "6281234567890")

    assert match is not None
    assert match.strategy == "resolver"


async def test_find_participant_reuses_supplied_resolution(directory, resolver) -> None:
    snapshot = _snapshot(Participant("11122233344455@lid"))

    match = await resolver.find_participant(
        snapshot,
        "6281234567890",
        resolution=Resolution("11122233344455@lid", "network"),
    )

    assert match is not None
    assert match.strategy == "resolver"
    assert directory.calls == []


async def test_find_participant_via_heuristic_records_group_mapping(store, resolver) -> None:
    snapshot = _snapshot(Participant("59385753436471@lid"))

    match = await resolver.find_participant(snapshot, "6285753436471")

    assert match is not None
    assert match.strategy == "matcher"
    assert store.get_phone_for_identifier("59385753436471@lid", GROUP) == "6285753436471"
    assert store.get_phone_for_identifier("59385753436471@lid") is None


async def test_find_participant_respects_role_filter(resolver) -> None:
    snapshot = _snapshot(Participant("6281234567890@s.whatsapp.net"))

    assert await resolver.find_participant(snapshot, "6281234567890", roles=("admin", "superadmin")) is None


async def test_find_participant_with_restricted_strategies(store, resolver) -> None:
    snapshot = _snapshot(Participant("59385753436471@lid"))

    assert await resolver.find_participant(snapshot, "6285753436471", strategies=("direct", "store")) is None


def test_display_prefers_cached_mapping(store, resolver) -> None:
    store.seed(DEFAULT_SEED_MAPPINGS)

    assert resolver.resolve_phone_display("59318229561477@lid") == "6285753436471"


def test_display_uses_heuristics_then_marks_opaque(resolver) -> None:
    assert resolver.resolve_phone_display("59385753436471@lid") == "6285753436471"
    assert resolver.resolve_phone_display("1234567890123@lid") == "1234567890123[LID]"
    assert resolver.resolve_phone_display("6281234567890:2@s.whatsapp.net") == "6281234567890"


def test_bot_admin_detected_through_lid() -> None:
    snapshot = _snapshot(Participant("99999999999999:4@lid", "admin"), Participant("6281234567890@s.whatsapp.net"))

    assert is_bot_admin(snapshot, BOT)
    assert not is_bot_admin(snapshot, BotIdentity(jid="6281234567890@s.whatsapp.net"))
