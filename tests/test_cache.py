import redis

import cache as cache_keys
from cache import Cache


class BrokenRedis:
    """Every call fails the way an unreachable server does."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise redis.ConnectionError("connection refused")
        return fail


def test_set_get_roundtrip(cache):
    cache.set("product:P1", {"name": "Kurti", "price": 499.0}, 60)
    assert cache.get("product:P1") == {"name": "Kurti", "price": 499.0}


def test_set_applies_ttl(cache, redis_client):
    cache.set(cache_keys.cart_key("u1"), {"items": []}, cache_keys.CART_TTL)
    assert 0 < redis_client.ttl("cart:u1") <= 1800


def test_missing_client_is_a_no_op():
    c = Cache(None)
    assert not c.enabled
    c.set("k", 1, 10)
    c.delete("k")
    assert c.get("k") is None
    assert c.scan_delete("products:") == 0
    assert c.ping() is False


def test_unreachable_server_degrades_to_miss():
    c = Cache(BrokenRedis())
    assert c.enabled
    assert c.get("product:P1") is None
    c.set("product:P1", {"a": 1}, 10)
    c.delete("product:P1")
    assert c.scan_delete("products:") == 0
    assert c.ping() is False


def test_corrupt_value_is_a_miss(cache, redis_client):
    redis_client.set("product:P1", "{not json")
    assert cache.get("product:P1") is None


def test_scan_delete_only_touches_prefix(cache, redis_client):
    for i in range(250):
        cache.set(f"products:q{i}", [i], 60)
    cache.set("product:P1", {"id": "P1"}, 60)
    cache.set("sales:all", [], 60)

    assert cache.scan_delete(cache_keys.PRODUCTS_PREFIX) == 250
    assert redis_client.exists("product:P1") == 1
    assert redis_client.exists("sales:all") == 1


def test_query_key_is_stable_across_dict_order():
    a = cache_keys.products_query_key({"category": "Kurtis", "price": {"$gte": 10}}, "rating")
    b = cache_keys.products_query_key({"price": {"$gte": 10}, "category": "Kurtis"}, "rating")
    assert a == b
    assert a.startswith(cache_keys.PRODUCTS_PREFIX)
