from comanda.infra.realtime import ChangeFeed
from comanda.payments.context import CheckoutContext


def test_enabled_flags():
    ctx = CheckoutContext(flags=frozenset({"coupons"}))
    assert ctx.enabled("coupons") is True
    assert ctx.enabled("COUPONS") is True
    assert ctx.enabled("loyalty") is False


def test_return_urls_use_base_url():
    ctx = CheckoutContext(base_url="https://app.test/")
    urls = ctx.return_urls("/ok?session_id={CHECKOUT_SESSION_ID}", "/ko")
    assert urls.success_url == "https://app.test/ok?session_id={CHECKOUT_SESSION_ID}"
    assert urls.cancel_url == "https://app.test/ko"


def test_publish_without_feed_is_noop():
    assert CheckoutContext(feed=None).publish("orders", "INSERT", {"id": "o-1"}) == 0


def test_publish_respects_realtime_flag():
    feed = ChangeFeed()
    got = []
    feed.subscribe("orders", None, got.append)

    assert CheckoutContext(flags=frozenset(), feed=feed).publish("orders", "INSERT", {"id": "o-1"}) == 0
    assert CheckoutContext(flags=frozenset({"realtime"}), feed=feed).publish("orders", "INSERT", {"id": "o-1"}) == 1
    assert len(got) == 1
