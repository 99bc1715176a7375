from visitor_analytics.middleware.rate_limit import SlidingWindowLimiter


def test_memory_limiter_blocks_after_rate():
    limiter = SlidingWindowLimiter(rate=2, period=60)

    assert limiter.redis_client is None
    assert limiter.hit("ip:1.2.3.4") == (True, 1)
    assert limiter.hit("ip:1.2.3.4") == (True, 0)
    assert limiter.hit("ip:1.2.3.4") == (False, 0)

    # Other clients have their own bucket
    assert limiter.hit("ip:5.6.7.8")[0] is True


def test_unreachable_redis_falls_back_to_memory():
    limiter = SlidingWindowLimiter(rate=1, period=60, redis_url="redis://127.0.0.1:1/0")

    assert limiter.redis_client is None
    assert limiter.hit("ip:1.2.3.4") == (True, 0)
