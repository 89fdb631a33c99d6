from juncture_backend.broker.cache import Cache


def test_set_get_roundtrip_keeps_json_structure(redis_client):
    cache = Cache(redis_client)
    assert cache.set("connection_details:c1", {"a": 1, "b": [1, 2]}, 60) is True
    assert cache.get("connection_details:c1") == {"a": 1, "b": [1, 2]}
    assert 0 < cache.ttl("connection_details:c1") <= 60


def test_non_positive_ttl_is_not_stored(redis_client):
    cache = Cache(redis_client)
    assert cache.set("access_token:c1", "tok", 0) is False
    assert cache.get("access_token:c1") is None


def test_pop_returns_value_once(redis_client):
    cache = Cache(redis_client)
    cache.set("oauth_state:n1", {"external_id": "x"}, 60)
    assert cache.pop("oauth_state:n1") == {"external_id": "x"}
    assert cache.pop("oauth_state:n1") is None


def test_undecodable_value_is_a_miss(redis_client):
    redis_client.set("connection_id:jira:x", "{not json")
    assert Cache(redis_client).get("connection_id:jira:x") is None


def test_failures_are_swallowed(broken_redis):
    cache = Cache(broken_redis)
    assert cache.get("k") is None
    assert cache.set("k", "v", 60) is False
    assert cache.delete("k") is False
    assert cache.pop("k") is None
    assert cache.ttl("k") is None
    assert cache.ping() is False
