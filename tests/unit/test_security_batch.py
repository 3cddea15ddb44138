"""Unit tests for batch decryption with failure isolation."""

import os

import pytest
from cloakbox.security.batch import decrypt_batch
from cloakbox.security.encryption import decrypt_entry_with_key, encrypt_entry_with_key


@pytest.fixture
def key():
    return os.urandom(32)


def _records(key, count):
    out = []
    for i in range(count):
        envelope = encrypt_entry_with_key({"n": i}, key).to_dict()
        out.append({"_id": f"rec-{i}", **envelope})
    return out


@pytest.mark.asyncio
async def test_one_corrupted_record_does_not_abort_the_batch(key):
    records = _records(key, 5)
    records[2]["ciphertext"][0] ^= 0x01

    result = await decrypt_batch(records, lambda r: decrypt_entry_with_key(r, key))

    assert result.successes == [{"n": 0}, {"n": 1}, {"n": 3}, {"n": 4}]
    assert len(result.failures) == 1
    failure = result.failures[0]
    assert failure.index == 2
    assert failure.record_id == "rec-2"
    assert failure.error == "IntegrityError"
    assert result.total == 5


@pytest.mark.asyncio
async def test_malformed_records_are_reported(key):
    records = _records(key, 2) + [{"_id": "broken"}, "not-a-dict"]

    result = await decrypt_batch(records, lambda r: decrypt_entry_with_key(r, key))

    assert len(result.successes) == 2
    assert [f.record_id for f in result.failures] == ["broken", None]
    assert all(f.error == "InvalidEnvelopeError" for f in result.failures)


@pytest.mark.asyncio
async def test_empty_batch(key):
    result = await decrypt_batch([], lambda r: r)
    assert result.successes == []
    assert result.failures == []


@pytest.mark.asyncio
async def test_unexpected_errors_propagate(key):
    def boom(record):
        raise RuntimeError("bug")

    with pytest.raises(RuntimeError):
        await decrypt_batch(_records(key, 1), boom)
