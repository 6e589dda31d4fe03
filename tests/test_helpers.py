import pytest

from contract_indexer.helpers import chunked, hex_to_int, retry, to_addr, to_dec, to_hex
from contract_indexer.signatures import UNKNOWN, StaticSignatureResolver, function_selector


@pytest.mark.asyncio
async def test_retry_backs_off_exponentially():
    delays = []
    calls = {"n": 0}

    async def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise ConnectionError("node hiccup")
        return "ok"

    async def fake_sleep(d):
        delays.append(d)

    assert await retry(flaky, max_retries=3, base_delay=1.0, sleep=fake_sleep) == "ok"
    assert delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_reraises_after_last_attempt():
    calls = {"n": 0}

    async def broken():
        calls["n"] += 1
        raise TimeoutError("still down")

    async def fake_sleep(d):
        pass

    with pytest.raises(TimeoutError):
        await retry(broken, max_retries=3, sleep=fake_sleep)
    assert calls["n"] == 3


def test_chunked():
    assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    assert list(chunked([], 3)) == []


def test_hex_conversions():
    assert to_hex(b"\x01\xff") == "0x01ff"
    assert to_hex(255) == "0xff"
    assert hex_to_int("0x10") == 16
    assert hex_to_int(b"\x01\x00") == 256
    assert to_dec("0x0de0b6b3a7640000") == "1000000000000000000"
    assert to_dec(None) is None


def test_addresses_lower_cased():
    assert to_addr("0xAbCdEf0000000000000000000000000000000001") == "0xabcdef0000000000000000000000000000000001"
    assert to_addr(None) is None


def test_function_selector():
    assert function_selector("0xA9059CBB" + "00" * 64) == "0xa9059cbb"
    assert function_selector("0x") is None
    assert function_selector("") is None
    assert function_selector("0x1234") == "0x1234"


def test_static_resolver_unknown_sentinel():
    r = StaticSignatureResolver()
    assert r.function_name("0xa9059cbb") == "transfer"
    assert r.function_name("0xdeadbeef") == UNKNOWN
    assert r.event_name(None) == UNKNOWN
    r.register_function("0xdeadbeef", "custom")
    assert r.function_name("0xDEADBEEF") == "custom"
