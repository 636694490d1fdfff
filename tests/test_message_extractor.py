from hypermem.services.message_extractor import ChatMessage, Mention, extract_message_memory


def _message(content, **kwargs):
    return ChatMessage(
        message_id="m-1",
        channel_id="c1",
        author_id="u-alice",
        author_name="alice",
        content=content,
        **kwargs,
    )


def _keys(edge_data):
    return [(item["entity"]["type"], item["entity"]["key"], item["role"], item["weight"]) for item in edge_data["memberships"]]


def test_like_pattern_becomes_fact():
    edge = extract_message_memory(_message("I really like hiking in the alps"))

    assert edge["edge_type"] == "fact"
    assert edge["summary"] == "User likes hiking in the alps"
    assert edge["importance"] == 0.7
    assert edge["channel_id"] == "c1"
    assert edge["source_message_id"] == "m-1"
    assert edge["memberships"][0]["entity"] == {"key": "u-alice", "type": "user", "name": "alice"}
    assert edge["memberships"][0]["weight"] == 1.0


def test_other_fact_patterns():
    assert extract_message_memory(_message("I hate mondays"))["summary"] == "User dislikes mondays"
    assert extract_message_memory(_message("my favorite band is Radiohead"))["summary"] == (
        "User's favorite band is Radiohead"
    )
    noted = extract_message_memory(_message("remember that the meetup moved to Friday"))
    assert noted["summary"] == "User noted: the meetup moved to Friday"
    assert noted["importance"] == 0.9
    identity = extract_message_memory(_message("I am a software engineer"))
    assert identity["summary"].startswith("User is software engineer")
    assert identity["importance"] == 0.5


def test_generic_state_is_not_a_fact():
    edge = extract_message_memory(_message("I am going to sleep now, good night everyone"))
    assert edge["edge_type"] == "observation"


def test_mentions_become_memberships():
    edge = extract_message_memory(
        _message(
            "did you see the release notes?",
            mentioned_users=[Mention("u-bob", "bob"), Mention("u-alice", "alice")],
            mentioned_channels=[Mention("c-news", "news")],
            mentioned_roles=[Mention("r-mods", "moderators")],
        )
    )

    assert edge["edge_type"] == "observation"
    keys = _keys(edge)
    assert ("user", "u-bob", "participant", 0.9) in keys
    assert ("channel", "c-news", "location", 0.5) in keys
    assert ("topic", "r-mods", "topic", 0.6) in keys
    assert ("topic", "release", "topic", 0.3) in keys
    assert sum(1 for item in keys if item[1] == "u-alice") == 1
    assert edge["summary"].startswith("alice with bob about")
    assert 0.3 < edge["importance"] <= 1.0


def test_trivial_messages_are_skipped():
    assert extract_message_memory(_message("ok")) is None
    assert extract_message_memory(_message("   ")) is None
    assert extract_message_memory(_message("hi all")) is None
