"""Tests for notification building and the event bus."""

from nebula.events import (
    ChatMessage,
    FinalKill,
    GameStart,
    GuildListEnd,
    GuildListLine,
    GuildListStart,
    GuildLiveJoin,
    LobbyJoined,
    PartyDisbanded,
    PartyInviteReceived,
    PartyMemberJoined,
    PartyMemberKicked,
    ServerChange,
    Unclassified,
    UsernameMention,
    WhoListReceived,
)
from nebula.notifier import (
    ChatReceived,
    EventBus,
    GameStarted,
    GuildMemberJoined,
    GuildMembersUpdated,
    InviteReceived,
    LobbyEntered,
    Mentioned,
    PartyCleared,
    PartyMemberRemoved,
    PartyUpdated,
    PlayerFinalKilled,
    PlayersUpdated,
    ServerChanged,
    build_notifications,
)
from nebula.roster import RosterState


def apply(roster, event):
    return build_notifications(event, roster.apply(event), roster)


class TestBuildNotifications:
    """Test which notifications an event produces."""

    def test_who_list_updates_players(self):
        roster = RosterState()
        notes = apply(roster, WhoListReceived(("Tom", "Jerry")))
        assert notes == [PlayersUpdated(("Tom", "Jerry"))]

    def test_unchanged_who_list_is_quiet(self):
        roster = RosterState()
        apply(roster, WhoListReceived(("Tom",)))
        assert apply(roster, WhoListReceived(("Tom",))) == []

    def test_invite(self):
        roster = RosterState()
        notes = apply(roster, PartyInviteReceived("Bob", leader="Alice"))
        assert notes == [InviteReceived("Bob", "Alice"), PlayersUpdated(("Bob",))]

    def test_final_kill_of_untracked_player(self):
        notes = apply(RosterState(), FinalKill("Steve"))
        assert notes == [PlayerFinalKilled("Steve")]

    def test_member_joined(self):
        roster = RosterState()
        notes = apply(roster, PartyMemberJoined("Bob"))
        assert PartyUpdated(("Bob",)) in notes
        assert PlayersUpdated(("Bob",)) in notes

    def test_member_kicked(self):
        roster = RosterState()
        apply(roster, PartyMemberJoined("Bob"))
        notes = apply(roster, PartyMemberKicked("Bob"))
        assert notes[0] == PartyMemberRemoved("Bob", kicked=True)
        assert PartyUpdated(()) in notes

    def test_disbanded_sends_cleared_only(self):
        roster = RosterState()
        apply(roster, PartyMemberJoined("Bob"))
        notes = apply(roster, PartyDisbanded())
        assert notes == [PartyCleared(), PlayersUpdated(())]

    def test_chat_and_mention(self):
        roster = RosterState()
        assert apply(roster, ChatMessage("Alice", "hey")) == [ChatReceived("Alice", "hey")]
        assert apply(roster, UsernameMention("Alice")) == [Mentioned("Alice")]

    def test_guild_capture_publishes_once(self):
        roster = RosterState()
        start = apply(roster, GuildListStart("Guild Name: Wardens"))
        line = apply(roster, GuildListLine("[VIP] Alice ●", ("Alice",)))
        end = apply(roster, GuildListEnd("Total Members: 1"))
        assert start == [ChatReceived("", "Guild Name: Wardens")]
        assert line == [ChatReceived("", "[VIP] Alice ●")]
        assert GuildMembersUpdated(("Alice",)) in end
        assert PlayersUpdated(("Alice",)) in end

    def test_empty_guild_capture_still_publishes(self):
        roster = RosterState()
        apply(roster, GuildListStart())
        assert apply(roster, GuildListEnd()) == [GuildMembersUpdated(())]

    def test_guild_live_join(self):
        notes = apply(RosterState(), GuildLiveJoin("awemoon"))
        assert notes == [GuildMemberJoined("awemoon")]

    def test_lifecycle(self):
        roster = RosterState()
        assert apply(roster, LobbyJoined()) == [LobbyEntered()]
        assert apply(roster, ServerChange()) == [ServerChanged()]
        assert apply(roster, GameStart()) == [GameStarted()]

    def test_unclassified_is_silent(self):
        assert apply(RosterState(), Unclassified()) == []


class TestEventBus:
    """Test subscription and isolation of observers."""

    def test_publish_to_all(self):
        bus = EventBus()
        a, b = [], []
        bus.subscribe(a.append)
        bus.subscribe(b.append)
        bus.publish(LobbyEntered())
        assert a == [LobbyEntered()]
        assert b == [LobbyEntered()]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        bus.publish(LobbyEntered())
        assert seen == []

    def test_failing_observer_isolated(self, caplog):
        bus = EventBus()
        seen = []

        def broken(note):
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(seen.append)
        bus.publish(ServerChanged())
        assert seen == [ServerChanged()]
        assert "failed" in caplog.text
