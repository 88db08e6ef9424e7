"""Tests for the message log, replies, read receipts and the song feed."""

import pytest

from duospace.companion import SongMetadata
from duospace.errors import InvalidReaction, MessageNotFound, NotAMember, SongNotFound
from duospace.messages import compose_message, reply_reference
from duospace.models import AI_SENDER_ID
from duospace.store import SONG_REACTIONS_KEY, USERS_KEY, mutate


async def two_member_space(service):
    alice = (await service.users.login("Alice")).user
    bob = (await service.users.login("Bob")).user
    space = await service.spaces.create_space(alice.id, "Nest")
    await service.spaces.join_space(bob.id, space.code)
    return space, alice, bob


@pytest.mark.asyncio
async def test_list_keeps_append_order(service):
    for text in ("one", "two", "three"):
        await service.messages.append(compose_message("s1", "alice", text))
    assert [m.content for m in await service.messages.list("s1")] == ["one", "two", "three"]
    assert await service.messages.list("other") == []


def test_reply_reference_truncates_long_content():
    target = compose_message("s1", "bob", "x" * 300)
    ref = reply_reference(target, snippet_length=10)
    assert ref.id == target.id
    assert ref.sender_id == "bob"
    assert len(ref.content) == 10


def test_compose_rejects_unknown_type():
    with pytest.raises(ValueError):
        compose_message("s1", "alice", "hi", type="video")


@pytest.mark.asyncio
async def test_reply_snapshots_target(service):
    space, alice, bob = await two_member_space(service)
    [original] = await service.send_message(space.id, alice.id, "movie tonight?")
    [reply] = await service.send_message(
        space.id, bob.id, "yes!", reply_to_id=original.id
    )
    assert reply.reply_to.id == original.id
    assert reply.reply_to.content == "movie tonight?"
    assert reply.reply_to.sender_id == alice.id

    stored = await service.messages.get(space.id, reply.id)
    assert stored.reply_to == reply.reply_to


@pytest.mark.asyncio
async def test_reply_to_missing_message_fails(service):
    space, alice, _ = await two_member_space(service)
    with pytest.raises(MessageNotFound):
        await service.send_message(space.id, alice.id, "hi", reply_to_id="nope")
    assert await service.messages.list(space.id) == []


@pytest.mark.asyncio
async def test_non_member_cannot_send(service):
    space, _, _ = await two_member_space(service)
    with pytest.raises(NotAMember):
        await service.send_message(space.id, "mallory", "hi")


@pytest.mark.asyncio
async def test_companion_trigger_appends_ai_reply(service):
    space, alice, _ = await two_member_space(service)
    sent = await service.send_message(space.id, alice.id, "@ai pick a movie")
    assert len(sent) == 2
    assert sent[1].sender_id == AI_SENDER_ID
    log = await service.messages.list(space.id)
    assert [m.sender_id for m in log] == [alice.id, AI_SENDER_ID]


@pytest.mark.asyncio
async def test_mark_read_respects_read_receipts(service):
    space, alice, bob = await two_member_space(service)
    await service.send_message(space.id, alice.id, "hello")
    assert await service.mark_read(space.id, bob.id) == 1
    assert await service.mark_read(space.id, bob.id) == 0

    await service.send_message(space.id, alice.id, "again")
    await service.users.update_settings(bob.id, read_receipts=False)
    assert await service.mark_read(space.id, bob.id) == 0
    last = (await service.messages.list(space.id))[-1]
    assert last.read_by == [alice.id]


class StubCompanion:
    async def reply(self, message, history, users):
        return "stub"

    async def extract_song_metadata(self, url):
        return SongMetadata(title="Song", artist="Band", platform="spotify", cover_art="art")


@pytest.mark.asyncio
async def test_shared_songs_feed_and_reactions(service):
    service.companion = StubCompanion()
    space, alice, bob = await two_member_space(service)
    first = await service.share_song(space.id, alice.id, "https://open.spotify.com/track/1")
    second = await service.share_song(space.id, bob.id, "https://open.spotify.com/track/2")
    assert first.type == "music_card"
    assert first.song.title == "Song"

    songs = await service.songs.list(space.id)
    assert [s.id for s in songs] == [second.song.id, first.song.id]

    await service.songs.react(space.id, first.song.id, bob.id, "like")
    await service.songs.react(space.id, first.song.id, alice.id, "repeat")
    await service.songs.react(space.id, first.song.id, alice.id, None)
    songs = await service.songs.list(space.id)
    assert songs[1].reactions == {bob.id: "like"}

    # The sharing message itself never changes.
    stored = await service.messages.get(space.id, first.id)
    assert stored.song.reactions == {}


@pytest.mark.asyncio
async def test_reaction_validation(service):
    space, alice, _ = await two_member_space(service)
    with pytest.raises(InvalidReaction):
        await service.songs.react(space.id, "x", alice.id, "love")
    with pytest.raises(SongNotFound):
        await service.songs.react(space.id, "x", alice.id, "like")


class RecordingCompanion(StubCompanion):
    def __init__(self):
        self.names = None

    async def reply(self, message, history, users):
        self.names = users
        return "stub"


@pytest.mark.asyncio
async def test_companion_reply_for_members_without_profiles(service):
    service.companion = RecordingCompanion()
    space = await service.spaces.create_space("alice", "Nest")
    await service.spaces.join_space("bob", space.code)

    sent = await service.send_message(space.id, "alice", "@ai hello")

    assert [m.sender_id for m in sent] == ["alice", AI_SENDER_ID]
    assert service.companion.names == ["alice", "bob"]
    log = await service.messages.list(space.id)
    assert [m.id for m in log] == [m.id for m in sent]


async def _forget_last_seen(service, user_id):
    def apply(users):
        users[user_id]["lastSeenAt"] = 0

    await mutate(service.store, USERS_KEY, apply, dict)


@pytest.mark.asyncio
async def test_activity_updates_last_seen(service):
    space, alice, bob = await two_member_space(service)
    actions = [
        (alice.id, service.send_message(space.id, alice.id, "hi")),
        (bob.id, service.mark_read(space.id, bob.id)),
        (alice.id, service.make_move(space.id, alice.id, 4)),
        (alice.id, service.request_reset(space.id, alice.id)),
    ]
    for user_id, action in actions:
        await _forget_last_seen(service, user_id)
        await action
        assert (await service.users.get_user(user_id)).last_seen_at > 0


@pytest.mark.asyncio
async def test_hidden_last_seen_is_not_updated(service):
    space, alice, _ = await two_member_space(service)
    await service.users.update_settings(alice.id, last_seen=False)
    await _forget_last_seen(service, alice.id)
    await service.send_message(space.id, alice.id, "hi")
    assert (await service.users.get_user(alice.id)).last_seen_at == 0


@pytest.mark.asyncio
async def test_emptied_space_drops_song_reactions(service):
    service.companion = StubCompanion()
    space, alice, bob = await two_member_space(service)
    shared = await service.share_song(space.id, alice.id, "https://open.spotify.com/track/1")
    await service.songs.react(space.id, shared.song.id, bob.id, "like")

    await service.spaces.leave_space(alice.id, space.id)
    reactions = await service.store.get(SONG_REACTIONS_KEY)
    assert space.id in reactions.value
    await service.spaces.leave_space(bob.id, space.id)
    reactions = await service.store.get(SONG_REACTIONS_KEY)
    assert space.id not in reactions.value
    assert await service.messages.list(space.id) == []
